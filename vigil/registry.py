"""
Slot registry: claim, release and transfer of the 48 daily windows.

Each operation runs in one transaction that locks the slot row(s) first.
The partial unique indexes on assignments are the final guard: if two
claims still race past the checks, the loser's INSERT fails and is
reported as the matching validation error.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from .database import get_connection, get_transaction
from .enums import AssignmentStatus
from .errors import (
    HolderAlreadyAssignedError,
    NotAssignedError,
    SlotAlreadyHeldError,
    SlotNotFoundError,
)
from .lifecycle import (
    RELEASE_ADMIN,
    RELEASE_HOLDER_REQUEST,
    RELEASE_TRANSFER,
    MissesReset,
    ReleaseRequested,
    TransitionResult,
    after_commit,
    apply_event,
)
from .metrics import summarize_attendance
from .pauses import covers
from .queries.assignments import (
    create_assignment,
    get_live_assignment,
    get_live_assignment_for_slot,
    list_live_assignments,
    list_slots_with_holders,
    lock_slot,
    set_slot_available,
)
from .queries.attendance import get_attendance_for_holder
from .queries.pauses import get_pause_windows
from .slots import get_window

logger = logging.getLogger(__name__)


def _conflict_error(e: IntegrityError, holder_id: int, slot_index: int) -> Exception:
    if "uq_assignments_live_holder" in str(e.orig):
        return HolderAlreadyAssignedError(f"Holder {holder_id} already holds a slot")
    return SlotAlreadyHeldError(f"Slot {slot_index} is already held")


async def claim_slot(holder_id: int, slot_index: int) -> dict:
    """
    Claim a free slot for a holder.

    Claiming the slot the holder already holds is a no-op that returns the
    existing assignment.

    Raises:
        SlotNotFoundError: Slot index outside 0..47
        HolderAlreadyAssignedError: Holder holds a different slot
        SlotAlreadyHeldError: Slot has another live holder
    """
    get_window(slot_index)

    async with get_transaction() as conn:
        if await lock_slot(conn, slot_index) is None:
            raise SlotNotFoundError(f"Slot {slot_index} does not exist")

        existing = await get_live_assignment(conn, holder_id, for_update=True)
        if existing:
            if existing["slot_index"] == slot_index:
                return existing
            raise HolderAlreadyAssignedError(
                f"Holder {holder_id} already holds slot {existing['slot_index']}"
            )

        if await get_live_assignment_for_slot(conn, slot_index):
            raise SlotAlreadyHeldError(f"Slot {slot_index} is already held")

        try:
            assignment = await create_assignment(conn, holder_id, slot_index)
        except IntegrityError as e:
            raise _conflict_error(e, holder_id, slot_index) from e

        await set_slot_available(conn, slot_index, False)

    logger.info(f"Holder {holder_id} claimed slot {slot_index}")
    return assignment


async def release_slot(
    holder_id: int,
    reason: str = RELEASE_HOLDER_REQUEST,
    now: datetime | None = None,
) -> TransitionResult:
    """
    Release the holder's live assignment and free its slot.

    Raises:
        NotAssignedError: The holder has no live assignment
    """
    now = now or datetime.now(timezone.utc)

    async with get_transaction() as conn:
        assignment = await get_live_assignment(conn, holder_id, for_update=True)
        if not assignment:
            raise NotAssignedError(f"Holder {holder_id} has no slot to release")
        result = await apply_event(conn, assignment, ReleaseRequested(reason), now=now)

    await after_commit(result, now=now)
    return result


async def force_release(holder_id: int, now: datetime | None = None) -> TransitionResult:
    """Admin override: release regardless of the holder's miss count."""
    return await release_slot(holder_id, reason=RELEASE_ADMIN, now=now)


async def reset_missed_count(holder_id: int, now: datetime | None = None) -> TransitionResult:
    """Admin override: clear the holder's consecutive misses."""
    async with get_transaction() as conn:
        assignment = await get_live_assignment(conn, holder_id, for_update=True)
        if not assignment:
            raise NotAssignedError(f"Holder {holder_id} has no live assignment")
        result = await apply_event(conn, assignment, MissesReset(), now=now)

    logger.info(f"Missed count reset for holder {holder_id}")
    return result


async def transfer_slot(
    holder_id: int,
    new_slot_index: int,
    now: datetime | None = None,
) -> dict:
    """
    Move a holder to another free slot in one transaction.

    The old assignment is released and a new one created with the same
    status and miss count, so a transfer neither forgives misses nor
    ends a pause. Transferring to the slot already held is a no-op.

    Raises:
        SlotNotFoundError: Target index outside 0..47
        NotAssignedError: The holder has no live assignment
        SlotAlreadyHeldError: Target slot has another live holder
    """
    get_window(new_slot_index)
    now = now or datetime.now(timezone.utc)

    async with get_transaction() as conn:
        current = await get_live_assignment(conn, holder_id)
        if not current:
            raise NotAssignedError(f"Holder {holder_id} has no slot to transfer")
        if current["slot_index"] == new_slot_index:
            return current

        # Lock both slots in index order so opposite transfers cannot deadlock
        for index in sorted((current["slot_index"], new_slot_index)):
            if await lock_slot(conn, index) is None:
                raise SlotNotFoundError(f"Slot {index} does not exist")

        current = await get_live_assignment(conn, holder_id, for_update=True)
        if not current:
            raise NotAssignedError(f"Holder {holder_id} has no slot to transfer")

        if await get_live_assignment_for_slot(conn, new_slot_index):
            raise SlotAlreadyHeldError(f"Slot {new_slot_index} is already held")

        released = await apply_event(
            conn, current, ReleaseRequested(RELEASE_TRANSFER), now=now
        )

        try:
            assignment = await create_assignment(
                conn,
                holder_id,
                new_slot_index,
                status=AssignmentStatus(current["status"]),
                missed_count=current["missed_count"],
            )
        except IntegrityError as e:
            raise _conflict_error(e, holder_id, new_slot_index) from e

        await set_slot_available(conn, new_slot_index, False)

    await after_commit(released, now=now)
    logger.info(
        f"Holder {holder_id} transferred from slot {current['slot_index']} "
        f"to slot {new_slot_index}"
    )
    return assignment


async def list_active() -> list[dict]:
    """Live (active or paused) assignments with holder details."""
    async with get_connection() as conn:
        return await list_live_assignments(conn)


async def list_slots() -> list[dict]:
    """The full 48-slot catalog with current holders."""
    async with get_connection() as conn:
        return await list_slots_with_holders(conn)


async def get_assignment_status(holder_id: int, now: datetime | None = None) -> dict:
    """
    The holder's live assignment, current pause and attendance summary.

    Returns:
        {"assignment": dict | None, "current_pause": dict | None,
         "upcoming_pauses": list, "attendance": AttendanceSummary}
    """
    now = now or datetime.now(timezone.utc)
    async with get_connection() as conn:
        assignment = await get_live_assignment(conn, holder_id)
        pauses = await get_pause_windows(conn, holder_id, ending_after=now)
        records = await get_attendance_for_holder(conn, holder_id)

    current = next((p for p in pauses if covers([p], now)), None)
    return {
        "assignment": assignment,
        "current_pause": current,
        "upcoming_pauses": [p for p in pauses if p is not current],
        "attendance": summarize_attendance(records),
    }
