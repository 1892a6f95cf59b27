"""Pytest fixtures for engine tests."""

import pytest


@pytest.fixture(autouse=True)
def default_settings(monkeypatch):
    """Run every test against the documented defaults, whatever .env says."""
    for name in (
        "MISS_THRESHOLD",
        "MISS_WARNING_AT",
        "ATTENDANCE_MIN_OVERLAP_MINUTES",
        "ATTENDANCE_TOLERANCE_MINUTES",
        "ATTENDANCE_SETTLE_MINUTES",
        "RECONCILE_GRACE_MINUTES",
        "CATCH_UP_LOOKBACK_DAYS",
        "PROVIDER_RETENTION_DAYS",
        "ZOOM_MEETING_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SLOT_TIMEZONE", "UTC")
