"""
High-level notification actions.

These functions are called by the lifecycle, the webhook route and the
admin routes. They build message context and pick the logical key that
makes each notification idempotent.
"""

import logging
from datetime import date, datetime

from ..constants import DEFAULT_LEAD_MINUTES
from ..database import get_connection
from ..enums import ConsentCategory, ConsentStatus, DispatchCategory
from ..queries.assignments import get_live_assignment
from ..queries.holders import get_admin_holders, get_holder
from ..queries.preferences import get_reminder_preference
from ..slots import get_window
from .channels.whatsapp import send_text
from .compliance import CATEGORY_NAMES, InboundResult, OptedIn, OptedOut
from .dispatcher import DispatchResult, dispatch
from .templates import get_message

logger = logging.getLogger(__name__)

RELEASE_REASON_TEXT = {
    "missed_threshold": "too many missed sessions in a row",
    "admin": "by an administrator",
    "holder_request": "at your request",
}


async def notify_missed_warning(
    holder_id: int,
    assignment_id: int,
    slot_index: int,
    missed_count: int,
    threshold: int,
    missed_on: date,
    now: datetime | None = None,
) -> DispatchResult:
    """Final warning before auto-release. One per missed day."""
    return await dispatch(
        holder_id=holder_id,
        category=DispatchCategory.missed_warning,
        logical_key=f"assignment:{assignment_id}@{missed_on.isoformat()}",
        message_type="missed_warning",
        context={
            "slot_label": get_window(slot_index).label,
            "missed_count": missed_count,
            "threshold": threshold,
            "missed_date": missed_on.isoformat(),
        },
        now=now,
    )


async def notify_slot_released(
    holder_id: int,
    assignment_id: int,
    slot_index: int,
    reason: str,
    missed_count: int | None = None,
    notify_admins: bool = True,
    now: datetime | None = None,
) -> dict:
    """
    Tell the holder their slot was released, and optionally every admin.

    Returns:
        {"holder": DispatchResult, "admins": {admin_id: DispatchResult}}
    """
    label = get_window(slot_index).label
    holder_result = await dispatch(
        holder_id=holder_id,
        category=DispatchCategory.slot_released,
        logical_key=f"assignment:{assignment_id}",
        message_type="slot_released",
        context={
            "slot_label": label,
            "reason_text": RELEASE_REASON_TEXT.get(reason, reason),
        },
        now=now,
    )

    admin_results = {}
    if notify_admins:
        async with get_connection() as conn:
            holder = await get_holder(conn, holder_id)
            admins = await get_admin_holders(conn)

        holder_name = (holder or {}).get("display_name") or f"holder {holder_id}"
        for admin in admins:
            admin_results[admin["holder_id"]] = await dispatch(
                holder_id=admin["holder_id"],
                category=DispatchCategory.slot_released,
                logical_key=f"assignment:{assignment_id}:admin",
                message_type="admin_slot_released",
                context={
                    "slot_label": label,
                    "holder_name": holder_name,
                    "missed_count": missed_count if missed_count is not None else "",
                },
                now=now,
            )

    return {"holder": holder_result, "admins": admin_results}


async def send_broadcast(
    update_key: str,
    title: str,
    body: str,
    holder_ids: list[int],
    now: datetime | None = None,
) -> dict:
    """
    Send an admin update to holders who have broadcast updates enabled.

    The update_key makes re-sending the same update a no-op per holder.

    Returns:
        Counts per dispatch outcome
    """
    counts: dict[str, int] = {}
    for holder_id in holder_ids:
        result = await dispatch(
            holder_id=holder_id,
            category=DispatchCategory.broadcast,
            logical_key=f"update:{update_key}",
            message_type="broadcast_update",
            context={"title": title, "body": body},
            now=now,
        )
        counts[result.outcome] = counts.get(result.outcome, 0) + 1
    logger.info(f"Broadcast {update_key}: {counts}")
    return counts


# =============================================================================
# Keyword replies
# =============================================================================


def _on_off(enabled: bool) -> str:
    return "on" if enabled else "off"


async def build_keyword_reply(result: InboundResult) -> str | None:
    """Reply text for a control keyword, or None if there is nothing to say."""
    command = result.command
    if command is None or result.holder_id is None:
        return None

    state = result.state
    preference = result.reminder_preference

    match command.action:
        case "opt_out":
            return get_message("keyword_opted_out", {})
        case "opt_in":
            return get_message("keyword_opted_in", {})
        case "set_lead":
            return get_message("keyword_lead_updated", {"lead_minutes": command.lead_minutes})
        case "enable" | "disable":
            if command.category == ConsentCategory.slot_reminders:
                if command.action == "enable":
                    lead = (preference or {}).get("lead_minutes", DEFAULT_LEAD_MINUTES)
                    return get_message("keyword_reminders_on", {"lead_minutes": lead})
                return get_message("keyword_reminders_off", {})
            message_type = (
                "keyword_category_on" if command.action == "enable" else "keyword_category_off"
            )
            return get_message(
                message_type, {"category_name": CATEGORY_NAMES[command.category]}
            )
        case "settings":
            async with get_connection() as conn:
                preference = await get_reminder_preference(conn, result.holder_id)
                assignment = await get_live_assignment(conn, result.holder_id)

            if isinstance(state.consent, OptedIn):
                status = ConsentStatus.opted_in.value.replace("_", " ")
            elif isinstance(state.consent, OptedOut):
                status = ConsentStatus.opted_out.value.replace("_", " ")
            else:
                status = "not subscribed"

            return get_message(
                "keyword_settings",
                {
                    "status": status,
                    "slot_label": (
                        get_window(assignment["slot_index"]).label if assignment else "none"
                    ),
                    "reminders": _on_off(
                        state.slot_reminders and (preference or {}).get("enabled", True)
                    ),
                    "lead_minutes": (preference or {}).get("lead_minutes", DEFAULT_LEAD_MINUTES),
                    "devotionals": _on_off(state.daily_content),
                    "updates": _on_off(state.broadcast_updates),
                },
            )
    return None


async def send_keyword_reply(
    phone_number: str,
    result: InboundResult,
) -> bool:
    """
    Confirm a control keyword to the sender.

    Replies go straight to the channel: the sender has just written to us,
    so the free-form window is open, and a STOP confirmation must still go
    out after the opt-out.
    """
    text = await build_keyword_reply(result)
    if text is None:
        return False
    return await send_text(phone_number, text)
