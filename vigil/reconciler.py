"""
Attendance reconciliation against the meeting provider's roster.

Two passes share one code path:
- the live poll visits windows that started recently (and those that
  ended less than RECONCILE_GRACE_MINUTES ago);
- the daily catch-up visits every window of the last few days that is not
  yet reconciled.

Per window the outcome is one of:
- attended: the holder's email shows up with enough overlap
- missed: the window is over, nobody matched, and the holder was not paused
- paused: the holder had a pause window covering the window start
- unavailable: the provider cannot say; nothing is recorded
- pending: the window is still running, or the provider failed transiently
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import sentry_sdk

from .config import (
    get_attendance_settle_minutes,
    get_attendance_tolerance_minutes,
    get_catch_up_lookback_days,
    get_meeting_id,
    get_min_overlap_minutes,
    get_reconcile_grace_minutes,
)
from .database import get_connection, get_transaction
from .enums import AssignmentStatus, ReconciliationStatus
from .lifecycle import (
    AbsenceRecorded,
    AttendanceMatched,
    TransitionResult,
    after_commit,
    apply_event,
)
from .meeting_provider import (
    MeetingProviderError,
    ParticipantSegment,
    RosterUnavailable,
    fetch_roster,
)
from .queries.assignments import get_assignment, list_assignments_held_between
from .queries.attendance import (
    get_reconciled_windows,
    insert_missed,
    mark_window,
    upsert_attended,
)
from .queries.pauses import get_holders_paused_at
from .slots import SLOT_LENGTH, SlotOccurrence, occurrences_between

logger = logging.getLogger(__name__)

# Window outcomes
ATTENDED = "attended"
MISSED = "missed"
PAUSED = "paused"
UNAVAILABLE = "unavailable"
PENDING = "pending"
UNHELD = "unheld"
ALREADY_RECORDED = "already_recorded"


@dataclass(frozen=True)
class AttendanceMatch:
    joined_at: datetime
    left_at: datetime
    overlap: timedelta
    instance_id: str | None


def normalize_email(email: str | None) -> str | None:
    if not email:
        return None
    return email.strip().casefold() or None


def match_holder(
    email: str | None,
    occurrence: SlotOccurrence,
    participants: list[ParticipantSegment],
    min_overlap: timedelta,
    tolerance: timedelta,
) -> AttendanceMatch | None:
    """
    Match a holder against the roster for one slot occurrence.

    All of the holder's segments count together: someone who drops and
    rejoins is credited with the sum of their time inside the window.
    The recorded join and leave times are clipped to the window widened by
    tolerance, so a day-long stay is stored against the slot it covered.

    Returns:
        The match, or None if the email is absent or the overlap too short
    """
    target = normalize_email(email)
    if target is None:
        return None

    segments = [
        s
        for s in participants
        if normalize_email(s.email) == target
        and occurrence.overlap(s.joined_at, s.left_at) > timedelta(0)
    ]
    if not segments:
        return None

    overlap = sum(
        (occurrence.overlap(s.joined_at, s.left_at) for s in segments), timedelta(0)
    )
    if overlap < min_overlap:
        return None

    first = min(segments, key=lambda s: s.joined_at)
    return AttendanceMatch(
        joined_at=max(first.joined_at, occurrence.start - tolerance),
        left_at=min(max(s.left_at for s in segments), occurrence.end + tolerance),
        overlap=overlap,
        instance_id=first.instance_id,
    )


def holder_at(occurrence: SlotOccurrence, assignments: list[dict]) -> dict | None:
    """
    The assignment responsible for a slot occurrence.

    That is the earliest assignment of the slot that was not yet released
    when the window started and was created before it ended.
    """
    held = [
        a
        for a in assignments
        if a["slot_index"] == occurrence.slot_index
        and a["created_at"] < occurrence.end
        and (a.get("released_at") is None or a["released_at"] > occurrence.start)
    ]
    return min(held, key=lambda a: a["created_at"]) if held else None


def live_poll_occurrences(now: datetime, slot_indexes: set[int]) -> list[SlotOccurrence]:
    """Windows that have started and ended no more than the grace period ago."""
    grace = timedelta(minutes=get_reconcile_grace_minutes())
    return [
        occ
        for occ in occurrences_between(now - grace - SLOT_LENGTH, now, slot_indexes=slot_indexes)
        if occ.start <= now and occ.end + grace >= now
    ]


def catch_up_occurrences(now: datetime, slot_indexes: set[int]) -> list[SlotOccurrence]:
    """Every fully elapsed window of the lookback period."""
    lookback = timedelta(days=get_catch_up_lookback_days())
    return [
        occ
        for occ in occurrences_between(now - lookback, now, slot_indexes=slot_indexes)
        if occ.end <= now
    ]


async def run_live_poll(now: datetime | None = None) -> dict:
    """Reconcile recent windows. Called every RECONCILE_INTERVAL_SECONDS."""
    now = now or datetime.now(timezone.utc)
    grace = timedelta(minutes=get_reconcile_grace_minutes())
    return await _run(now, now - grace - SLOT_LENGTH, live_poll_occurrences)


async def run_catch_up(now: datetime | None = None) -> dict:
    """Reconcile the lookback period's unreconciled windows. Called daily."""
    now = now or datetime.now(timezone.utc)
    lookback = timedelta(days=get_catch_up_lookback_days())
    return await _run(now, now - lookback, catch_up_occurrences)


async def _run(now: datetime, since: datetime, select_occurrences) -> dict:
    async with get_connection() as conn:
        # Slots released or transferred since still owe a record for the
        # windows their holder had
        held = await list_assignments_held_between(conn, since - SLOT_LENGTH, now)
        occurrences = select_occurrences(now, {a["slot_index"] for a in held})
        if occurrences:
            dates = [o.on for o in occurrences]
            done = await get_reconciled_windows(conn, min(dates), max(dates))
            occurrences = [o for o in occurrences if (o.slot_index, o.on) not in done]

    return await reconcile_occurrences(occurrences, held, now)


async def reconcile_occurrences(
    occurrences: list[SlotOccurrence],
    assignments: list[dict],
    now: datetime,
    meeting_id: str | None = None,
) -> dict:
    """
    Reconcile a batch of slot occurrences against one roster fetch.

    Args:
        occurrences: Windows to resolve
        assignments: Every assignment that may have held one of them
            (see holder_at)

    Returns:
        Counts per outcome, e.g. {"attended": 2, "missed": 1, ...}
    """
    stats = {
        ATTENDED: 0,
        MISSED: 0,
        PAUSED: 0,
        UNAVAILABLE: 0,
        PENDING: 0,
        UNHELD: 0,
        ALREADY_RECORDED: 0,
        "errors": 0,
    }
    if not occurrences:
        return stats

    tolerance = timedelta(minutes=get_attendance_tolerance_minutes())
    range_start = min(o.start for o in occurrences) - tolerance
    range_end = max(o.end for o in occurrences) + tolerance

    try:
        roster = await fetch_roster(
            meeting_id or get_meeting_id(), range_start, range_end, now=now
        )
    except MeetingProviderError as e:
        logger.warning(f"Meeting provider unavailable, leaving windows pending: {e}")
        await _mark_all(occurrences, ReconciliationStatus.pending, now, str(e))
        stats[PENDING] += len(occurrences)
        return stats

    if isinstance(roster, RosterUnavailable):
        logger.info(f"Roster unavailable ({roster.reason}) for {len(occurrences)} windows")
        await _mark_unavailable(occurrences, now, roster.reason, stats)
        return stats

    # Only windows overlapping an unreported meeting instance have to wait
    unreported = [
        o for o in occurrences if not roster.covers(o.start - tolerance, o.end + tolerance)
    ]
    if unreported:
        logger.info(f"Participant report missing for {len(unreported)} windows")
        await _mark_unavailable(unreported, now, "participant report not available yet", stats)

    waiting = {(o.slot_index, o.on) for o in unreported}
    for occ in occurrences:
        if (occ.slot_index, occ.on) in waiting:
            continue
        try:
            outcome = await reconcile_window(
                occ, holder_at(occ, assignments), roster.participants, now
            )
            stats[outcome] += 1
        except Exception as e:
            logger.exception(
                f"Failed to reconcile slot {occ.slot_index} on {occ.on}: {e}"
            )
            sentry_sdk.capture_exception(e)
            stats["errors"] += 1

    return stats


async def _mark_unavailable(
    occurrences: list[SlotOccurrence],
    now: datetime,
    reason: str,
    stats: dict,
) -> None:
    # Windows still running are simply visited again by the next poll
    elapsed = [o for o in occurrences if o.end <= now]
    await _mark_all(elapsed, ReconciliationStatus.unavailable, now, reason)
    stats[UNAVAILABLE] += len(elapsed)
    stats[PENDING] += len(occurrences) - len(elapsed)


async def _mark_all(
    occurrences: list[SlotOccurrence],
    status: ReconciliationStatus,
    now: datetime,
    error: str | None,
) -> None:
    if not occurrences:
        return
    async with get_transaction() as conn:
        for occ in occurrences:
            await mark_window(conn, occ.slot_index, occ.on, status, now, error=error)


async def reconcile_window(
    occ: SlotOccurrence,
    assignment: dict | None,
    participants: list[ParticipantSegment],
    now: datetime,
) -> str:
    """
    Resolve one slot occurrence and apply the outcome to the lifecycle.

    Re-running with the same roster is a no-op: the attended upsert only
    touches "missed" rows and the missed insert only fires once per date.
    """
    elapsed = occ.end <= now
    settled = occ.end + timedelta(minutes=get_attendance_settle_minutes()) <= now

    if assignment is None or assignment["created_at"] >= occ.end:
        # Nobody held the slot during this occurrence
        if elapsed:
            async with get_transaction() as conn:
                await mark_window(conn, occ.slot_index, occ.on, ReconciliationStatus.reconciled, now)
        return UNHELD

    match = match_holder(
        assignment["email"],
        occ,
        participants,
        timedelta(minutes=get_min_overlap_minutes()),
        timedelta(minutes=get_attendance_tolerance_minutes()),
    )

    if match is None and not settled:
        return PENDING

    result: TransitionResult | None = None
    async with get_transaction() as conn:
        if match is not None:
            outcome = ALREADY_RECORDED
            if await upsert_attended(
                conn,
                holder_id=assignment["holder_id"],
                assignment_id=assignment["assignment_id"],
                slot_index=occ.slot_index,
                attendance_date=occ.on,
                joined_at=match.joined_at,
                left_at=match.left_at,
                meeting_instance_id=match.instance_id,
                now=now,
            ):
                outcome = ATTENDED
                result = await _apply_if_live(
                    conn, assignment, AttendanceMatched(attended_at=match.left_at), now
                )
        else:
            paused = await get_holders_paused_at(conn, occ.start, [assignment["holder_id"]])
            if assignment["holder_id"] in paused:
                outcome = PAUSED
            elif await insert_missed(
                conn,
                holder_id=assignment["holder_id"],
                assignment_id=assignment["assignment_id"],
                slot_index=occ.slot_index,
                attendance_date=occ.on,
            ):
                outcome = MISSED
                result = await _apply_if_live(
                    conn, assignment, AbsenceRecorded(on=occ.on), now
                )
            else:
                outcome = ALREADY_RECORDED

        if elapsed:
            await mark_window(conn, occ.slot_index, occ.on, ReconciliationStatus.reconciled, now)

    if outcome in (ATTENDED, MISSED):
        logger.info(
            f"Holder {assignment['holder_id']} {outcome} slot {occ.slot_index} on {occ.on}"
        )
    if result is not None:
        await after_commit(result, now=now)
    return outcome


async def _apply_if_live(conn, assignment: dict, event, now: datetime) -> TransitionResult | None:
    locked = await get_assignment(conn, assignment["assignment_id"], for_update=True)
    if locked is None or locked["status"] == AssignmentStatus.released:
        return None
    return await apply_event(conn, locked, event, now=now)
