"""Root pytest configuration."""

from pathlib import Path

import pytest
from dotenv import load_dotenv

# Load environment variables before tests run
_root = Path(__file__).parent
load_dotenv(_root / ".env")
load_dotenv(_root / ".env.local", override=True)

# Credentials that would let a test reach a real external service
OUTBOUND_CREDENTIALS = (
    "WHATSAPP_TOKEN",
    "WHATSAPP_PHONE_NUMBER_ID",
    "ZOOM_ACCOUNT_ID",
    "ZOOM_CLIENT_ID",
    "ZOOM_CLIENT_SECRET",
    "SENTRY_DSN",
)


@pytest.fixture(autouse=True)
def no_outbound_credentials(monkeypatch):
    """Tests never talk to WhatsApp, Zoom or Sentry, even with a local .env."""
    for name in OUTBOUND_CREDENTIALS:
        monkeypatch.delenv(name, raising=False)
