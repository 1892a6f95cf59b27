"""Pytest fixtures for notification tests."""

import pytest


@pytest.fixture(autouse=True)
def notification_settings(monkeypatch):
    for name in (
        "DISPATCH_RETRY_CAP",
        "STALE_DISPATCH_MINUTES",
        "REMINDER_INTERVAL_SECONDS",
        "MEETING_JOIN_URL",
        "WHATSAPP_TEMPLATE_LANGUAGE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SLOT_TIMEZONE", "UTC")
