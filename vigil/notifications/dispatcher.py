"""
Notification dispatcher - gates, deduplicates and sends WhatsApp messages.

Order of operations for one logical message:
1. compliance gate (blocked sends leave no trace in the log)
2. claim the dispatch_log row; only the claimant sends
3. render free-form text or template parameters
4. send through the channel
5. mark sent, or retrying/failed
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import sentry_sdk

from ..config import get_dispatch_retry_cap, get_stale_dispatch_minutes
from ..database import get_connection, get_transaction
from ..enums import DispatchCategory, DispatchStatus, SendMode
from ..queries.compliance import get_compliance_state
from ..queries.dispatch import (
    cancel_retrying,
    claim_dispatch,
    get_dispatch,
    mark_dispatch_failed,
    mark_dispatch_sent,
    reclaim_dispatch,
)
from ..queries.holders import get_holder
from .channels.whatsapp import send_template, send_text
from .compliance import Blocked, check_gate, compliance_from_row
from .templates import get_message, get_template

logger = logging.getLogger(__name__)

# Dispatch outcomes
SENT = "sent"
RETRYING = "retrying"
FAILED = "failed"
DUPLICATE = "duplicate"
BLOCKED = "blocked"


@dataclass(frozen=True)
class DispatchResult:
    outcome: str
    dispatch_id: int | None = None
    send_mode: SendMode | None = None
    reason: str | None = None


def build_context(holder: dict, context: dict) -> dict:
    return {
        "name": holder.get("display_name") or "there",
        **context,
    }


async def dispatch(
    holder_id: int,
    category: DispatchCategory,
    logical_key: str,
    message_type: str,
    context: dict,
    now: datetime | None = None,
) -> DispatchResult:
    """
    Send one logical message at most once.

    Args:
        holder_id: Recipient
        category: Dispatch category (decides the consent toggle)
        logical_key: Identifies the message within the category, e.g.
            "06:00–06:30@2025-01-10" for a slot reminder
        message_type: Key in messages.yaml
        context: Template variables
    """
    now = now or datetime.now(timezone.utc)

    async with get_connection() as conn:
        holder = await get_holder(conn, holder_id)
        compliance_row = await get_compliance_state(conn, holder_id)

    if not holder or not holder.get("phone_number"):
        logger.info(f"Not sending {message_type} to holder {holder_id}: no phone number")
        return DispatchResult(BLOCKED, reason="no phone number")

    gate = check_gate(compliance_from_row(compliance_row), category.consent_category, now)
    if isinstance(gate, Blocked):
        logger.info(f"Not sending {message_type} to holder {holder_id}: {gate.reason}")
        return DispatchResult(BLOCKED, reason=gate.reason)

    retry_cap = get_dispatch_retry_cap()
    async with get_transaction() as conn:
        dispatch_id = await claim_dispatch(
            conn, holder_id, category, logical_key, message_type, now
        )
        if dispatch_id is None:
            dispatch_id = await reclaim_dispatch(
                conn,
                holder_id,
                category,
                logical_key,
                retry_cap=retry_cap,
                stale_before=now - timedelta(minutes=get_stale_dispatch_minutes()),
                now=now,
            )

    if dispatch_id is None:
        return DispatchResult(DUPLICATE)

    full_context = build_context(holder, context)
    phone = holder["phone_number"]

    try:
        if gate.mode == SendMode.free_form:
            success = await send_text(phone, get_message(message_type, full_context))
        else:
            name, params = get_template(message_type, full_context)
            success = await send_template(phone, name, params)
    except KeyError as e:
        # Missing template or context variable: retrying cannot help
        error = f"Cannot render {message_type}: missing {e}"
        logger.error(error)
        async with get_transaction() as conn:
            await mark_dispatch_failed(
                conn, dispatch_id, error, retry_cap, send_mode=gate.mode, terminal=True
            )
        sentry_sdk.capture_message(error, level="error")
        return DispatchResult(FAILED, dispatch_id, gate.mode, reason=error)
    except Exception as e:
        # The claimed row must not stay pending; count it as a failed attempt
        logger.exception(f"Send of {message_type} to holder {holder_id} raised: {e}")
        sentry_sdk.capture_exception(e)
        success = False
        send_error = f"send raised {type(e).__name__}: {e}"
    else:
        send_error = "channel send failed"

    async with get_transaction() as conn:
        if success:
            await mark_dispatch_sent(conn, dispatch_id, gate.mode, now)
            status = DispatchStatus.sent
        else:
            status = await mark_dispatch_failed(
                conn, dispatch_id, send_error, retry_cap, send_mode=gate.mode
            )

    if status == DispatchStatus.sent:
        logger.info(f"Sent {message_type} to holder {holder_id} ({gate.mode.value})")
        return DispatchResult(SENT, dispatch_id, gate.mode)

    if status == DispatchStatus.failed:
        logger.error(
            f"Giving up on {message_type} for holder {holder_id} after {retry_cap} attempts"
        )
        sentry_sdk.capture_message(
            f"Dispatch failed: {message_type} to holder {holder_id} ({logical_key})",
            level="warning",
        )
        return DispatchResult(FAILED, dispatch_id, gate.mode, reason="retry cap reached")

    logger.warning(f"Send of {message_type} to holder {holder_id} failed, will retry")
    return DispatchResult(RETRYING, dispatch_id, gate.mode, reason=send_error)


async def was_dispatched(
    holder_id: int,
    category: DispatchCategory,
    logical_key: str,
) -> bool:
    """Check whether a logical message was already sent successfully."""
    async with get_connection() as conn:
        row = await get_dispatch(conn, holder_id, category, logical_key)
    return row is not None and row["status"] == DispatchStatus.sent


async def cancel_reminder_retries(holder_id: int) -> int:
    """Stop retrying slot reminders for a holder whose slot was released."""
    async with get_transaction() as conn:
        return await cancel_retrying(
            conn, holder_id, [DispatchCategory.slot_reminder], reason="assignment released"
        )
