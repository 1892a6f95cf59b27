"""
Assignment lifecycle state machine.

An assignment is Active, Paused or Released. Attendance outcomes, pause
windows and explicit holder/admin actions arrive as events; transition()
is the only place that decides the next state. apply_event() persists a
transition inside the caller's transaction so the assignment row and the
slot's availability flag always change together.

Side effects of a release (stopping reminder retries, telling the holder
and admins) run after commit in after_commit().
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone

import sentry_sdk
from sqlalchemy.ext.asyncio import AsyncConnection

from .config import get_miss_threshold, get_miss_warning_at
from .enums import AssignmentStatus
from .errors import InvalidTransitionError
from .queries.assignments import set_slot_available, update_assignment

logger = logging.getLogger(__name__)


# =============================================================================
# States
# =============================================================================


@dataclass(frozen=True)
class Active:
    missed_count: int = 0


@dataclass(frozen=True)
class Paused:
    missed_count: int = 0


@dataclass(frozen=True)
class Released:
    reason: str


AssignmentState = Active | Paused | Released


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class AttendanceMatched:
    attended_at: datetime


@dataclass(frozen=True)
class AbsenceRecorded:
    on: date


@dataclass(frozen=True)
class PauseStarted:
    pass


@dataclass(frozen=True)
class PauseEnded:
    pass


@dataclass(frozen=True)
class ReleaseRequested:
    reason: str


@dataclass(frozen=True)
class MissesReset:
    pass


AssignmentEvent = (
    AttendanceMatched
    | AbsenceRecorded
    | PauseStarted
    | PauseEnded
    | ReleaseRequested
    | MissesReset
)

# Release reasons
RELEASE_MISSED_THRESHOLD = "missed_threshold"
RELEASE_HOLDER_REQUEST = "holder_request"
RELEASE_TRANSFER = "transfer"
RELEASE_ADMIN = "admin"


def transition(
    state: AssignmentState, event: AssignmentEvent, threshold: int
) -> AssignmentState:
    """
    Compute the next assignment state.

    Args:
        state: Current state
        event: What happened
        threshold: Miss count at which the assignment is released

    Raises:
        InvalidTransitionError: If the state does not accept the event
    """
    if isinstance(state, Released):
        raise InvalidTransitionError(
            f"Assignment already released ({state.reason}); "
            f"cannot apply {type(event).__name__}"
        )

    live_type = type(state)

    match event:
        case AttendanceMatched() | MissesReset():
            return live_type(missed_count=0)
        case AbsenceRecorded():
            missed = state.missed_count + 1
            if missed >= threshold:
                return Released(reason=RELEASE_MISSED_THRESHOLD)
            return live_type(missed_count=missed)
        case PauseStarted():
            return Paused(missed_count=state.missed_count)
        case PauseEnded():
            return Active(missed_count=state.missed_count)
        case ReleaseRequested(reason=reason):
            return Released(reason=reason)

    raise InvalidTransitionError(f"Unknown assignment event: {event!r}")


def state_from_row(row: dict) -> AssignmentState:
    status = AssignmentStatus(row["status"])
    if status == AssignmentStatus.released:
        return Released(reason=row.get("release_reason") or "unknown")
    if status == AssignmentStatus.paused:
        return Paused(missed_count=row["missed_count"])
    return Active(missed_count=row["missed_count"])


def _state_values(state: AssignmentState, now: datetime) -> dict:
    if isinstance(state, Released):
        return {
            "status": AssignmentStatus.released,
            "released_at": now,
            "release_reason": state.reason,
        }
    status = AssignmentStatus.paused if isinstance(state, Paused) else AssignmentStatus.active
    return {"status": status, "missed_count": state.missed_count}


# =============================================================================
# Persistence
# =============================================================================


@dataclass(frozen=True)
class TransitionResult:
    assignment_id: int
    holder_id: int
    slot_index: int
    event: AssignmentEvent
    previous: AssignmentState
    current: AssignmentState

    @property
    def released(self) -> bool:
        return isinstance(self.current, Released) and not isinstance(
            self.previous, Released
        )

    @property
    def missed_count(self) -> int | None:
        if isinstance(self.current, Released):
            # Released on a miss: the count that broke the threshold
            if isinstance(self.event, AbsenceRecorded):
                return self.previous.missed_count + 1
            return None
        return self.current.missed_count


async def apply_event(
    conn: AsyncConnection,
    assignment: dict,
    event: AssignmentEvent,
    now: datetime | None = None,
    threshold: int | None = None,
) -> TransitionResult:
    """
    Persist one transition within the caller's transaction.

    The caller must have locked the assignment row (SELECT ... FOR UPDATE)
    so that concurrent events serialize.
    """
    now = now or datetime.now(timezone.utc)
    threshold = threshold if threshold is not None else get_miss_threshold()

    previous = state_from_row(assignment)
    current = transition(previous, event, threshold)

    values = _state_values(current, now)
    if isinstance(current, Released) and isinstance(event, AbsenceRecorded):
        values["missed_count"] = previous.missed_count + 1
    if isinstance(event, AttendanceMatched):
        values["last_attended_at"] = event.attended_at
    values["updated_at"] = now

    await update_assignment(conn, assignment["assignment_id"], **values)

    if isinstance(current, Released):
        await set_slot_available(conn, assignment["slot_index"], True)

    return TransitionResult(
        assignment_id=assignment["assignment_id"],
        holder_id=assignment["holder_id"],
        slot_index=assignment["slot_index"],
        event=event,
        previous=previous,
        current=current,
    )


# =============================================================================
# Post-commit effects
# =============================================================================


async def handle_release(result: TransitionResult, now: datetime | None = None) -> None:
    """
    Side effects of a committed release.

    Stops outstanding reminder retries and tells the holder (and admins, for
    automatic releases) that the slot is open again.
    """
    # Import here to avoid circular imports
    from .notifications.actions import notify_slot_released
    from .notifications.dispatcher import cancel_reminder_retries

    reason = result.current.reason
    logger.info(
        f"Assignment {result.assignment_id} released "
        f"(holder {result.holder_id}, slot {result.slot_index}, {reason})"
    )
    cancelled = await cancel_reminder_retries(result.holder_id)
    if cancelled:
        logger.info(f"Cancelled {cancelled} reminder retries for holder {result.holder_id}")

    if reason == RELEASE_MISSED_THRESHOLD:
        sentry_sdk.capture_message(
            f"Slot {result.slot_index} auto-released after "
            f"{result.missed_count} missed sessions",
            level="info",
        )
    if reason in (RELEASE_MISSED_THRESHOLD, RELEASE_ADMIN):
        await notify_slot_released(
            holder_id=result.holder_id,
            assignment_id=result.assignment_id,
            slot_index=result.slot_index,
            reason=reason,
            missed_count=result.missed_count,
            notify_admins=reason == RELEASE_MISSED_THRESHOLD,
            now=now,
        )


async def after_commit(result: TransitionResult, now: datetime | None = None) -> None:
    """
    Run the side effects of a committed transition.

    Misses at or past the warning level send a final warning. Failures are
    logged, never raised: the transition itself is already durable.
    """
    from .notifications.actions import notify_missed_warning

    now = now or datetime.now(timezone.utc)

    try:
        if result.released:
            await handle_release(result, now=now)
        elif isinstance(result.event, AbsenceRecorded):
            missed = result.missed_count or 0
            if missed >= get_miss_warning_at():
                await notify_missed_warning(
                    holder_id=result.holder_id,
                    assignment_id=result.assignment_id,
                    slot_index=result.slot_index,
                    missed_count=missed,
                    threshold=get_miss_threshold(),
                    missed_on=result.event.on,
                    now=now,
                )
    except Exception as e:
        logger.exception(
            f"Post-transition effects failed for assignment {result.assignment_id}: {e}"
        )
        sentry_sdk.capture_exception(e)
