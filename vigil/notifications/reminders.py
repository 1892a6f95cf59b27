"""
Slot reminders.

Every tick the scheduler looks at each active holder's slot on the local
days around now and asks decide_reminder() what to do. Sends go through
the dispatcher, whose insert-wins claim keeps concurrent schedulers from
sending the same reminder twice.
"""

import enum
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

import sentry_sdk

from ..config import (
    get_dispatch_retry_cap,
    get_meeting_join_url,
    get_reminder_interval_seconds,
    get_stale_dispatch_minutes,
)
from ..constants import DEFAULT_LEAD_MINUTES
from ..database import get_connection
from ..enums import DispatchCategory
from ..queries.dispatch import list_retrying_keys
from ..queries.reminders import list_reminder_candidates
from ..slots import SlotOccurrence, get_window, local_date
from ..timezone import format_time_in_timezone, in_quiet_hours
from .dispatcher import SENT, dispatch

logger = logging.getLogger(__name__)


class ReminderAction(str, enum.Enum):
    send = "send"
    send_deferred = "send_deferred"
    defer = "defer"
    drop = "drop"
    retry = "retry"
    not_due = "not_due"


def decide_reminder(
    now: datetime,
    slot_start: datetime,
    lead: timedelta,
    tick: timedelta,
    is_quiet: Callable[[datetime], bool],
    has_pending_retry: bool = False,
) -> ReminderAction:
    """
    Decide what to do about one reminder on this tick.

    The reminder is due at slot_start - lead. It is sent on the first tick
    at or after that instant. If the holder is in quiet hours then, it waits
    until they end, and is dropped if the slot starts first.

    Args:
        now: Tick time
        slot_start: Start of the slot occurrence
        lead: How long before the slot to remind
        tick: Scheduler interval
        is_quiet: Whether an instant falls in the holder's quiet hours
        has_pending_retry: A failed send for this reminder may be retried
    """
    due_at = slot_start - lead
    if now < due_at:
        return ReminderAction.not_due

    if now >= slot_start:
        # Report a drop once, on the first tick after the slot started
        if now < slot_start + tick and is_quiet(due_at):
            return ReminderAction.drop
        return ReminderAction.not_due

    if is_quiet(now):
        if now < due_at + tick or is_quiet(due_at):
            return ReminderAction.defer
        return ReminderAction.not_due

    if now < due_at + tick:
        return ReminderAction.send
    if is_quiet(due_at):
        return ReminderAction.send_deferred
    if has_pending_retry:
        return ReminderAction.retry
    return ReminderAction.not_due


def reminder_key(occurrence: SlotOccurrence) -> str:
    """Logical key of a slot reminder, e.g. "06:00–06:30@2025-01-10"."""
    return f"{occurrence.window.label}@{occurrence.on.isoformat()}"


def candidate_occurrences(slot_index: int, now: datetime) -> list[SlotOccurrence]:
    """The slot's occurrences on yesterday, today and tomorrow (coverage timezone)."""
    window = get_window(slot_index)
    today = local_date(now)
    return [window.occurrence(today + timedelta(days=offset)) for offset in (-1, 0, 1)]


def _holder_timezone(candidate: dict) -> str | None:
    return candidate.get("preference_timezone") or candidate.get("holder_timezone")


async def run_reminder_scan(now: datetime | None = None) -> dict:
    """
    One reminder tick over every active holder.

    Returns:
        Counts: {"sent", "deferred", "dropped", "skipped", "errors"}
    """
    now = now or datetime.now(timezone.utc)
    tick = timedelta(seconds=get_reminder_interval_seconds())
    stats = {"sent": 0, "deferred": 0, "dropped": 0, "skipped": 0, "errors": 0}

    async with get_connection() as conn:
        candidates = await list_reminder_candidates(conn)
        retrying = await list_retrying_keys(
            conn,
            DispatchCategory.slot_reminder,
            get_dispatch_retry_cap(),
            stale_before=now - timedelta(minutes=get_stale_dispatch_minutes()),
        )

    for candidate in candidates:
        # Missing preferences row means defaults: enabled, 30 minutes
        if candidate.get("enabled") is False or candidate.get("slot_reminders") is False:
            continue

        tz_name = _holder_timezone(candidate)
        lead_minutes = candidate.get("lead_minutes")
        if lead_minutes is None:
            lead_minutes = DEFAULT_LEAD_MINUTES
        lead = timedelta(minutes=lead_minutes)

        def is_quiet(instant: datetime) -> bool:
            return in_quiet_hours(
                instant, tz_name, candidate.get("quiet_start"), candidate.get("quiet_end")
            )

        for occ in candidate_occurrences(candidate["slot_index"], now):
            key = reminder_key(occ)
            action = decide_reminder(
                now,
                occ.start,
                lead,
                tick,
                is_quiet,
                has_pending_retry=(candidate["holder_id"], key) in retrying,
            )

            if action == ReminderAction.not_due:
                continue
            if action == ReminderAction.defer:
                stats["deferred"] += 1
                continue
            if action == ReminderAction.drop:
                logger.info(
                    f"Dropped reminder {key} for holder {candidate['holder_id']}: "
                    f"quiet hours lasted past the slot start"
                )
                stats["dropped"] += 1
                continue

            try:
                result = await send_slot_reminder(candidate, occ, lead, tz_name, now)
                stats["sent" if result.outcome == SENT else "skipped"] += 1
            except Exception as e:
                logger.exception(
                    f"Reminder {key} for holder {candidate['holder_id']} failed: {e}"
                )
                sentry_sdk.capture_exception(e)
                stats["errors"] += 1

    if stats["sent"] or stats["errors"]:
        logger.info(f"Reminder scan: {stats}")
    return stats


async def send_slot_reminder(
    candidate: dict,
    occ: SlotOccurrence,
    lead: timedelta,
    tz_name: str | None,
    now: datetime,
):
    return await dispatch(
        holder_id=candidate["holder_id"],
        category=DispatchCategory.slot_reminder,
        logical_key=reminder_key(occ),
        message_type="slot_reminder",
        context={
            "slot_label": occ.window.label,
            "slot_time": format_time_in_timezone(occ.start, tz_name),
            "slot_date": occ.on.isoformat(),
            "lead_minutes": int(lead.total_seconds() // 60),
            "join_url": get_meeting_join_url(),
        },
        now=now,
    )


def next_reminder_at(
    slot_index: int,
    lead_minutes: int,
    now: datetime,
) -> datetime | None:
    """When the holder's next reminder is due (ignoring quiet hours)."""
    lead = timedelta(minutes=lead_minutes)
    upcoming = [
        occ.start - lead
        for occ in candidate_occurrences(slot_index, now)
        if occ.start - lead >= now
    ]
    return min(upcoming) if upcoming else None
