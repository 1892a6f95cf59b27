"""Inbound WhatsApp webhook handling: signatures, handshake and payload parsing."""

import hashlib
import hmac
import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class WebhookSignatureError(Exception):
    """Raised when webhook signature verification fails."""

    pass


@dataclass(frozen=True)
class InboundMessage:
    phone_number: str  # E.164 with leading "+"
    text: str | None
    message_id: str | None = None


def verify_webhook_signature(payload: bytes, signature_header: str | None) -> None:
    """Verify the X-Hub-Signature-256 header against WHATSAPP_APP_SECRET.

    Raises:
        WebhookSignatureError: If signature is invalid or secret not configured
    """
    secret = os.getenv("WHATSAPP_APP_SECRET")
    if not secret:
        raise WebhookSignatureError("WHATSAPP_APP_SECRET not configured")

    if not signature_header or not signature_header.startswith("sha256="):
        raise WebhookSignatureError("Invalid signature header format")

    expected_sig = signature_header[7:]
    computed_sig = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()

    if not hmac.compare_digest(expected_sig, computed_sig):
        raise WebhookSignatureError("Signature verification failed")


def verify_subscription(mode: str | None, token: str | None) -> bool:
    """The GET handshake: mode must be "subscribe" and the token must match."""
    expected = os.getenv("WHATSAPP_VERIFY_TOKEN")
    if not expected or mode != "subscribe" or token is None:
        return False
    return hmac.compare_digest(token, expected)


def normalize_phone(raw: str | None) -> str | None:
    """WhatsApp sends bare digits; holders are stored in E.164."""
    if not raw:
        return None
    digits = "".join(ch for ch in raw if ch.isdigit())
    return f"+{digits}" if digits else None


def extract_inbound_messages(payload: dict) -> list[InboundMessage]:
    """
    Pull sender and text out of a webhook payload.

    Status callbacks (delivered/read) carry no "messages" and yield nothing.
    Non-text messages come back with text=None so they still count as
    inbound activity.
    """
    messages = []
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            for message in value.get("messages") or []:
                phone = normalize_phone(message.get("from"))
                if phone is None:
                    logger.warning(f"Inbound message without sender: {message.get('id')}")
                    continue
                text = None
                if message.get("type") == "text":
                    text = (message.get("text") or {}).get("body")
                elif message.get("type") == "button":
                    text = (message.get("button") or {}).get("text")
                messages.append(
                    InboundMessage(phone_number=phone, text=text, message_id=message.get("id"))
                )
    return messages
