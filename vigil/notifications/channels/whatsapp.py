"""WhatsApp Cloud API delivery channel (free-form text and templates)."""

import logging
import os

import httpx

from ...config import get_messaging_timeout_seconds

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com/v19.0"


def is_whatsapp_configured() -> bool:
    return bool(os.environ.get("WHATSAPP_TOKEN") and os.environ.get("WHATSAPP_PHONE_NUMBER_ID"))


def get_template_language() -> str:
    return os.environ.get("WHATSAPP_TEMPLATE_LANGUAGE", "en")


async def _post_message(payload: dict) -> bool:
    if not is_whatsapp_configured():
        logger.warning("WhatsApp not configured, message not sent")
        return False

    url = f"{GRAPH_API_BASE}/{os.environ['WHATSAPP_PHONE_NUMBER_ID']}/messages"
    headers = {"Authorization": f"Bearer {os.environ['WHATSAPP_TOKEN']}"}

    try:
        async with httpx.AsyncClient(timeout=get_messaging_timeout_seconds()) as client:
            response = await client.post(url, json=payload, headers=headers)
    except httpx.HTTPError as e:
        logger.warning(f"WhatsApp request to {payload.get('to')} failed: {e}")
        return False

    if response.status_code >= 400:
        logger.warning(
            f"WhatsApp send to {payload.get('to')} returned "
            f"{response.status_code}: {response.text[:200]}"
        )
        return False

    return True


async def send_text(phone_number: str, body: str) -> bool:
    """
    Send a free-form text message.

    Only valid within 24 hours of the recipient's last inbound message.

    Returns:
        True if the API accepted the message
    """
    return await _post_message(
        {
            "messaging_product": "whatsapp",
            "to": phone_number,
            "type": "text",
            "text": {"body": body, "preview_url": False},
        }
    )


async def send_template(
    phone_number: str,
    template_name: str,
    params: list[str],
    language: str | None = None,
) -> bool:
    """
    Send a pre-approved template message with ordered body parameters.

    Returns:
        True if the API accepted the message
    """
    components = []
    if params:
        components.append(
            {
                "type": "body",
                "parameters": [{"type": "text", "text": str(p)} for p in params],
            }
        )
    return await _post_message(
        {
            "messaging_product": "whatsapp",
            "to": phone_number,
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": language or get_template_language()},
                "components": components,
            },
        }
    )
