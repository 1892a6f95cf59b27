"""
Pause windows: planned absences that suspend miss counting.

A window covers every instant from starts_at through ends_at inclusive.
The reconciler asks whether the holder was paused at the start of a slot
occurrence; the periodic sweep keeps the assignment's Active/Paused status
in line with the windows so reminders stop during a pause.
"""

import logging
from datetime import datetime, timedelta, timezone

from .constants import MAX_PAUSE_DAYS
from .database import get_connection, get_transaction
from .enums import AssignmentStatus
from .errors import InvalidPauseWindowError, NotAssignedError, OverlappingPauseError
from .lifecycle import PauseEnded, PauseStarted, apply_event
from .queries.assignments import (
    get_assignment,
    get_live_assignment,
    list_live_assignments,
)
from .queries.pauses import (
    create_pause_window,
    find_overlapping_pause,
    get_holders_paused_at,
    get_pause_windows,
)

logger = logging.getLogger(__name__)


def covers(windows: list[dict], instant: datetime) -> bool:
    """Whether any of the pause windows covers an instant (end inclusive)."""
    return any(w["starts_at"] <= instant <= w["ends_at"] for w in windows)


def validate_pause_window(
    starts_at: datetime,
    ends_at: datetime,
    now: datetime,
) -> None:
    """
    Raises:
        InvalidPauseWindowError: Naive datetimes, end not after start, a window
            that is already over, or one longer than MAX_PAUSE_DAYS
    """
    if starts_at.tzinfo is None or ends_at.tzinfo is None:
        raise InvalidPauseWindowError("Pause times must include a timezone")
    if ends_at <= starts_at:
        raise InvalidPauseWindowError("Pause must end after it starts")
    if ends_at <= now:
        raise InvalidPauseWindowError("Pause window is already over")
    if ends_at - starts_at > timedelta(days=MAX_PAUSE_DAYS):
        raise InvalidPauseWindowError(f"Pause cannot be longer than {MAX_PAUSE_DAYS} days")


async def request_pause(
    holder_id: int,
    starts_at: datetime,
    ends_at: datetime,
    reason: str | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Record a pause window for a holder with a live assignment.

    A window that has already begun pauses the assignment immediately.

    Raises:
        InvalidPauseWindowError: See validate_pause_window
        NotAssignedError: The holder holds no slot
        OverlappingPauseError: The window intersects an existing one
    """
    now = now or datetime.now(timezone.utc)
    validate_pause_window(starts_at, ends_at, now)

    async with get_transaction() as conn:
        assignment = await get_live_assignment(conn, holder_id, for_update=True)
        if not assignment:
            raise NotAssignedError(f"Holder {holder_id} has no slot to pause")

        existing = await find_overlapping_pause(conn, holder_id, starts_at, ends_at)
        if existing:
            raise OverlappingPauseError(
                f"Pause overlaps existing window {existing['starts_at'].isoformat()} "
                f"to {existing['ends_at'].isoformat()}"
            )

        pause = await create_pause_window(conn, holder_id, starts_at, ends_at, reason)

        if covers([pause], now) and assignment["status"] == AssignmentStatus.active:
            await apply_event(conn, assignment, PauseStarted(), now=now)

    logger.info(
        f"Holder {holder_id} paused from {starts_at.isoformat()} to {ends_at.isoformat()}"
    )
    return pause


async def is_paused(holder_id: int, instant: datetime) -> bool:
    async with get_connection() as conn:
        paused = await get_holders_paused_at(conn, instant, [holder_id])
    return holder_id in paused


async def list_pauses(holder_id: int, now: datetime | None = None) -> list[dict]:
    """The holder's current and upcoming pause windows."""
    now = now or datetime.now(timezone.utc)
    async with get_connection() as conn:
        return await get_pause_windows(conn, holder_id, ending_after=now)


async def sweep_pause_states(now: datetime | None = None) -> dict:
    """
    Move assignments between Active and Paused as pause windows begin and end.

    Returns:
        {"paused": n, "resumed": n}
    """
    now = now or datetime.now(timezone.utc)
    paused = resumed = 0

    async with get_connection() as conn:
        live = await list_live_assignments(conn)
        if not live:
            return {"paused": 0, "resumed": 0}
        covered = await get_holders_paused_at(conn, now, [a["holder_id"] for a in live])

    for row in live:
        should_pause = row["holder_id"] in covered
        is_paused_now = row["status"] == AssignmentStatus.paused
        if should_pause == is_paused_now:
            continue

        event = PauseStarted() if should_pause else PauseEnded()
        async with get_transaction() as conn:
            assignment = await get_assignment(conn, row["assignment_id"], for_update=True)
            # Re-check under the lock; a release or another sweep may have won
            if not assignment or assignment["status"] != row["status"]:
                continue
            await apply_event(conn, assignment, event, now=now)

        if should_pause:
            paused += 1
        else:
            resumed += 1

    if paused or resumed:
        logger.info(f"Pause sweep: {paused} paused, {resumed} resumed")
    return {"paused": paused, "resumed": resumed}
