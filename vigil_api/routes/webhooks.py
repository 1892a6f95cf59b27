"""
WhatsApp webhook routes.

Endpoints:
- GET /api/webhooks/whatsapp - Subscription verification handshake
- POST /api/webhooks/whatsapp - Inbound messages and control keywords
"""

import json
import logging

import sentry_sdk
from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from vigil.notifications.actions import send_keyword_reply
from vigil.notifications.compliance import handle_inbound_message
from vigil.notifications.inbound import (
    WebhookSignatureError,
    extract_inbound_messages,
    verify_subscription,
    verify_webhook_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.get("/whatsapp", response_class=PlainTextResponse)
async def verify_whatsapp_webhook(
    mode: str | None = Query(default=None, alias="hub.mode"),
    token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str = Query(default="", alias="hub.challenge"),
) -> str:
    if not verify_subscription(mode, token):
        raise HTTPException(status_code=403, detail="Verification failed")
    return challenge


@router.post("/whatsapp")
async def whatsapp_webhook(request: Request) -> dict:
    """
    Handle inbound WhatsApp messages.

    Every message refreshes the sender's free-form window; control keywords
    (STOP, START, REMIND ...) update consent and get a confirmation reply.
    """
    body = await request.body()
    try:
        verify_webhook_signature(body, request.headers.get("X-Hub-Signature-256"))
    except WebhookSignatureError as e:
        logger.warning(f"Rejected WhatsApp webhook: {e}")
        raise HTTPException(status_code=401, detail=str(e))

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    processed = 0
    for message in extract_inbound_messages(payload):
        try:
            result = await handle_inbound_message(message.phone_number, message.text)
            if result.handled and result.holder_id is not None:
                await send_keyword_reply(message.phone_number, result)
            processed += 1
        except Exception as e:
            # Keep going: the provider retries the whole batch on a non-2xx
            logger.exception(f"Failed to handle inbound message {message.message_id}")
            sentry_sdk.capture_exception(e)

    return {"status": "ok", "processed": processed}
