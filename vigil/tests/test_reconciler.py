"""Tests for attendance reconciliation."""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from vigil.enums import AssignmentStatus, ReconciliationStatus
from vigil.lifecycle import AbsenceRecorded, AttendanceMatched
from vigil.meeting_provider import (
    MeetingProviderError,
    ParticipantSegment,
    RosterAvailable,
    RosterUnavailable,
)
from vigil.reconciler import (
    ALREADY_RECORDED,
    ATTENDED,
    MISSED,
    PAUSED,
    PENDING,
    UNAVAILABLE,
    UNHELD,
    catch_up_occurrences,
    holder_at,
    live_poll_occurrences,
    match_holder,
    normalize_email,
)
from vigil.slots import get_window

MIN_OVERLAP = timedelta(minutes=10)
TOLERANCE = timedelta(minutes=5)


def utc(day, hour, minute=0, second=0):
    return datetime(2025, 1, day, hour, minute, second, tzinfo=timezone.utc)


def segment(email, joined, left, instance_id="inst-1"):
    return ParticipantSegment(
        email=email, name=None, joined_at=joined, left_at=left, instance_id=instance_id
    )


def _mock_db(mock_ctx):
    conn = AsyncMock()
    mock_ctx.return_value.__aenter__.return_value = conn
    mock_ctx.return_value.__aexit__.return_value = None
    return conn


ASSIGNMENT = {
    "assignment_id": 7,
    "holder_id": 42,
    "slot_index": 12,
    "status": AssignmentStatus.active,
    "missed_count": 0,
    "email": "Grace@Example.org",
    "created_at": utc(1, 0),
}
SLOT_13 = {**ASSIGNMENT, "assignment_id": 8, "holder_id": 43, "slot_index": 13}


class TestMatchHolder:
    def test_full_window_attendance_matches(self):
        """Joined 05:59:30, left 06:31 for the 06:00–06:30 window."""
        occ = get_window(12).occurrence(date(2025, 1, 10))
        roster = [segment("grace@example.org", utc(10, 5, 59, 30), utc(10, 6, 31))]

        match = match_holder("grace@example.org", occ, roster, MIN_OVERLAP, TOLERANCE)

        assert match is not None
        assert match.overlap == timedelta(minutes=30)
        assert match.joined_at == utc(10, 5, 59, 30)
        assert match.left_at == utc(10, 6, 31)

    def test_email_match_ignores_case_and_whitespace(self):
        occ = get_window(12).occurrence(date(2025, 1, 10))
        roster = [segment("grace@example.org", utc(10, 6), utc(10, 6, 30))]

        assert match_holder("  Grace@Example.ORG ", occ, roster, MIN_OVERLAP, TOLERANCE) is not None

    def test_short_visit_does_not_match(self):
        occ = get_window(12).occurrence(date(2025, 1, 10))
        roster = [segment("grace@example.org", utc(10, 6, 25), utc(10, 6, 40))]

        assert match_holder("grace@example.org", occ, roster, MIN_OVERLAP, TOLERANCE) is None

    def test_rejoins_are_summed(self):
        occ = get_window(12).occurrence(date(2025, 1, 10))
        roster = [
            segment("grace@example.org", utc(10, 6, 0), utc(10, 6, 6)),
            segment("grace@example.org", utc(10, 6, 20), utc(10, 6, 26), "inst-2"),
        ]

        match = match_holder("grace@example.org", occ, roster, MIN_OVERLAP, TOLERANCE)

        assert match is not None
        assert match.overlap == timedelta(minutes=12)
        assert match.instance_id == "inst-1"

    def test_other_participants_do_not_count(self):
        occ = get_window(12).occurrence(date(2025, 1, 10))
        roster = [segment("someone@example.org", utc(10, 6), utc(10, 6, 30))]

        assert match_holder("grace@example.org", occ, roster, MIN_OVERLAP, TOLERANCE) is None

    def test_holder_without_email_never_matches(self):
        occ = get_window(12).occurrence(date(2025, 1, 10))
        roster = [segment(None, utc(10, 6), utc(10, 6, 30))]

        assert match_holder(None, occ, roster, MIN_OVERLAP, TOLERANCE) is None
        assert normalize_email("   ") is None


class TestOccurrenceSelection:
    def test_live_poll_includes_running_and_recent_windows(self):
        found = live_poll_occurrences(utc(10, 6, 45), {11, 12, 13, 14})
        # 11 ended more than the grace period ago; 14 has not started
        assert [o.slot_index for o in found] == [12, 13]

    def test_live_poll_skips_held_slots_outside_range(self):
        found = live_poll_occurrences(utc(10, 6, 45), {30})
        assert found == []

    def test_catch_up_only_includes_elapsed_windows(self):
        found = catch_up_occurrences(utc(10, 6, 15), {12})
        assert [(o.slot_index, o.on) for o in found] == [
            (12, date(2025, 1, 8)),
            (12, date(2025, 1, 9)),
        ]


class TestReconcileWindow:
    OCC = get_window(12).occurrence(date(2025, 1, 10))

    @pytest.mark.asyncio
    async def test_attended_records_and_resets_misses(self):
        from vigil.reconciler import reconcile_window

        roster = [segment("grace@example.org", utc(10, 5, 59, 30), utc(10, 6, 31))]
        now = utc(10, 6, 45)
        with patch("vigil.reconciler.get_transaction") as mock_tx, patch(
            "vigil.reconciler.upsert_attended", new_callable=AsyncMock, return_value=True
        ) as mock_upsert, patch(
            "vigil.reconciler.get_assignment", new_callable=AsyncMock, return_value=ASSIGNMENT
        ), patch("vigil.reconciler.apply_event", new_callable=AsyncMock) as mock_apply, patch(
            "vigil.reconciler.mark_window", new_callable=AsyncMock
        ) as mock_mark, patch("vigil.reconciler.after_commit", new_callable=AsyncMock) as mock_after:
            conn = _mock_db(mock_tx)
            outcome = await reconcile_window(self.OCC, ASSIGNMENT, roster, now)

        assert outcome == ATTENDED
        kwargs = mock_upsert.call_args.kwargs
        assert kwargs["attendance_date"] == date(2025, 1, 10)
        assert kwargs["joined_at"] == utc(10, 5, 59, 30)
        mock_apply.assert_awaited_once_with(
            conn, ASSIGNMENT, AttendanceMatched(attended_at=utc(10, 6, 31)), now=now
        )
        mock_mark.assert_awaited_once_with(
            conn, 12, date(2025, 1, 10), ReconciliationStatus.reconciled, now
        )
        mock_after.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_absence_after_settle_time_is_a_miss(self):
        from vigil.reconciler import reconcile_window

        now = utc(10, 7, 0)
        with patch("vigil.reconciler.get_transaction") as mock_tx, patch(
            "vigil.reconciler.get_holders_paused_at", new_callable=AsyncMock, return_value=set()
        ), patch(
            "vigil.reconciler.insert_missed", new_callable=AsyncMock, return_value=True
        ) as mock_insert, patch(
            "vigil.reconciler.get_assignment", new_callable=AsyncMock, return_value=ASSIGNMENT
        ), patch("vigil.reconciler.apply_event", new_callable=AsyncMock) as mock_apply, patch(
            "vigil.reconciler.mark_window", new_callable=AsyncMock
        ), patch("vigil.reconciler.after_commit", new_callable=AsyncMock):
            conn = _mock_db(mock_tx)
            outcome = await reconcile_window(self.OCC, ASSIGNMENT, [], now)

        assert outcome == MISSED
        mock_insert.assert_awaited_once()
        mock_apply.assert_awaited_once_with(
            conn, ASSIGNMENT, AbsenceRecorded(on=date(2025, 1, 10)), now=now
        )

    @pytest.mark.asyncio
    async def test_absence_before_settle_time_stays_pending(self):
        from vigil.reconciler import reconcile_window

        with patch("vigil.reconciler.get_transaction") as mock_tx:
            outcome = await reconcile_window(self.OCC, ASSIGNMENT, [], utc(10, 6, 35))

        assert outcome == PENDING
        mock_tx.assert_not_called()

    @pytest.mark.asyncio
    async def test_paused_holder_gets_no_record(self):
        """A pause covering 2025-01-11 means nothing is recorded for that day."""
        from vigil.reconciler import reconcile_window

        occ = get_window(12).occurrence(date(2025, 1, 11))
        with patch("vigil.reconciler.get_transaction") as mock_tx, patch(
            "vigil.reconciler.get_holders_paused_at", new_callable=AsyncMock, return_value={42}
        ) as mock_paused, patch(
            "vigil.reconciler.insert_missed", new_callable=AsyncMock
        ) as mock_insert, patch("vigil.reconciler.apply_event", new_callable=AsyncMock) as mock_apply, patch(
            "vigil.reconciler.mark_window", new_callable=AsyncMock
        ) as mock_mark:
            conn = _mock_db(mock_tx)
            outcome = await reconcile_window(occ, ASSIGNMENT, [], utc(11, 8, 0))

        assert outcome == PAUSED
        mock_paused.assert_awaited_once_with(conn, occ.start, [42])
        mock_insert.assert_not_awaited()
        mock_apply.assert_not_awaited()
        mock_mark.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rerun_does_not_count_a_miss_twice(self):
        from vigil.reconciler import reconcile_window

        with patch("vigil.reconciler.get_transaction") as mock_tx, patch(
            "vigil.reconciler.get_holders_paused_at", new_callable=AsyncMock, return_value=set()
        ), patch(
            "vigil.reconciler.insert_missed", new_callable=AsyncMock, return_value=False
        ), patch("vigil.reconciler.apply_event", new_callable=AsyncMock) as mock_apply, patch(
            "vigil.reconciler.mark_window", new_callable=AsyncMock
        ), patch("vigil.reconciler.after_commit", new_callable=AsyncMock) as mock_after:
            _mock_db(mock_tx)
            outcome = await reconcile_window(self.OCC, ASSIGNMENT, [], utc(10, 8, 0))

        assert outcome == ALREADY_RECORDED
        mock_apply.assert_not_awaited()
        mock_after.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_released_assignment_is_not_transitioned(self):
        from vigil.reconciler import reconcile_window

        released = {**ASSIGNMENT, "status": AssignmentStatus.released}
        with patch("vigil.reconciler.get_transaction") as mock_tx, patch(
            "vigil.reconciler.get_holders_paused_at", new_callable=AsyncMock, return_value=set()
        ), patch(
            "vigil.reconciler.insert_missed", new_callable=AsyncMock, return_value=True
        ), patch(
            "vigil.reconciler.get_assignment", new_callable=AsyncMock, return_value=released
        ), patch("vigil.reconciler.apply_event", new_callable=AsyncMock) as mock_apply, patch(
            "vigil.reconciler.mark_window", new_callable=AsyncMock
        ), patch("vigil.reconciler.after_commit", new_callable=AsyncMock) as mock_after:
            _mock_db(mock_tx)
            outcome = await reconcile_window(self.OCC, ASSIGNMENT, [], utc(10, 8, 0))

        assert outcome == MISSED
        mock_apply.assert_not_awaited()
        mock_after.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unheld_window_is_only_checkpointed(self):
        from vigil.reconciler import reconcile_window

        with patch("vigil.reconciler.get_transaction") as mock_tx, patch(
            "vigil.reconciler.mark_window", new_callable=AsyncMock
        ) as mock_mark, patch("vigil.reconciler.insert_missed", new_callable=AsyncMock) as mock_insert:
            _mock_db(mock_tx)
            outcome = await reconcile_window(self.OCC, None, [], utc(10, 8, 0))

        assert outcome == UNHELD
        mock_mark.assert_awaited_once()
        mock_insert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_assignment_claimed_after_window_is_unheld(self):
        from vigil.reconciler import reconcile_window

        late = {**ASSIGNMENT, "created_at": utc(10, 6, 40)}
        with patch("vigil.reconciler.get_transaction") as mock_tx, patch(
            "vigil.reconciler.mark_window", new_callable=AsyncMock
        ), patch("vigil.reconciler.insert_missed", new_callable=AsyncMock) as mock_insert:
            _mock_db(mock_tx)
            outcome = await reconcile_window(self.OCC, late, [], utc(10, 8, 0))

        assert outcome == UNHELD
        mock_insert.assert_not_awaited()


class TestReconcileOccurrences:
    OCC = get_window(12).occurrence(date(2025, 1, 10))

    @pytest.mark.asyncio
    async def test_provider_error_leaves_windows_pending(self):
        from vigil.reconciler import reconcile_occurrences

        now = utc(10, 8, 0)
        with patch(
            "vigil.reconciler.fetch_roster",
            new_callable=AsyncMock,
            side_effect=MeetingProviderError("timeout"),
        ), patch("vigil.reconciler._mark_all", new_callable=AsyncMock) as mock_mark, patch(
            "vigil.reconciler.reconcile_window", new_callable=AsyncMock
        ) as mock_window:
            stats = await reconcile_occurrences([self.OCC], [ASSIGNMENT], now, meeting_id="123")

        assert stats[PENDING] == 1
        assert stats[MISSED] == 0
        mock_mark.assert_awaited_once_with(
            [self.OCC], ReconciliationStatus.pending, now, "timeout"
        )
        mock_window.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unavailable_roster_records_nothing(self):
        from vigil.reconciler import reconcile_occurrences

        now = utc(10, 8, 0)
        with patch(
            "vigil.reconciler.fetch_roster",
            new_callable=AsyncMock,
            return_value=RosterUnavailable("outside provider retention"),
        ), patch("vigil.reconciler._mark_all", new_callable=AsyncMock) as mock_mark, patch(
            "vigil.reconciler.reconcile_window", new_callable=AsyncMock
        ) as mock_window:
            stats = await reconcile_occurrences([self.OCC], [ASSIGNMENT], now, meeting_id="123")

        assert stats[UNAVAILABLE] == 1
        mock_mark.assert_awaited_once_with(
            [self.OCC], ReconciliationStatus.unavailable, now, "outside provider retention"
        )
        mock_window.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_one_failing_window_does_not_stop_the_batch(self):
        from vigil.reconciler import reconcile_occurrences

        other = get_window(13).occurrence(date(2025, 1, 10))
        now = utc(10, 8, 0)
        with patch(
            "vigil.reconciler.fetch_roster",
            new_callable=AsyncMock,
            return_value=RosterAvailable([]),
        ), patch(
            "vigil.reconciler.reconcile_window",
            new_callable=AsyncMock,
            side_effect=[RuntimeError("boom"), MISSED],
        ):
            stats = await reconcile_occurrences(
                [self.OCC, other], [ASSIGNMENT, SLOT_13], now, meeting_id="123"
            )

        assert stats["errors"] == 1
        assert stats[MISSED] == 1

    @pytest.mark.asyncio
    async def test_roster_fetched_once_with_tolerance(self):
        from vigil.reconciler import reconcile_occurrences

        other = get_window(13).occurrence(date(2025, 1, 10))
        now = utc(10, 8, 0)
        with patch(
            "vigil.reconciler.fetch_roster",
            new_callable=AsyncMock,
            return_value=RosterAvailable([]),
        ) as mock_fetch, patch(
            "vigil.reconciler.reconcile_window", new_callable=AsyncMock, return_value=MISSED
        ):
            await reconcile_occurrences(
                [self.OCC, other], [ASSIGNMENT, SLOT_13], now, meeting_id="123"
            )

        mock_fetch.assert_awaited_once_with("123", utc(10, 5, 55), utc(10, 7, 5), now=now)

    @pytest.mark.asyncio
    async def test_unreported_instance_only_holds_back_overlapping_windows(self):
        from vigil.reconciler import reconcile_occurrences

        other = get_window(13).occurrence(date(2025, 1, 10))
        now = utc(10, 8, 0)
        roster = RosterAvailable([], gaps=[(utc(10, 6, 40), utc(10, 7, 10))])
        with patch(
            "vigil.reconciler.fetch_roster", new_callable=AsyncMock, return_value=roster
        ), patch("vigil.reconciler._mark_all", new_callable=AsyncMock) as mock_mark, patch(
            "vigil.reconciler.reconcile_window", new_callable=AsyncMock, return_value=MISSED
        ) as mock_window:
            stats = await reconcile_occurrences(
                [self.OCC, other], [ASSIGNMENT, SLOT_13], now, meeting_id="123"
            )

        assert stats[UNAVAILABLE] == 1
        assert stats[MISSED] == 1
        mock_mark.assert_awaited_once_with(
            [other], ReconciliationStatus.unavailable, now, "participant report not available yet"
        )
        mock_window.assert_awaited_once_with(self.OCC, ASSIGNMENT, [], now)


class TestRecordedTimes:
    def test_long_stay_is_clipped_to_window_and_tolerance(self):
        """In the meeting 01:00 to 11:00; the 06:00–06:30 record says 05:55 to 06:35."""
        occ = get_window(12).occurrence(date(2025, 1, 10))
        roster = [segment("grace@example.org", utc(10, 1, 0), utc(10, 11, 0))]

        match = match_holder("grace@example.org", occ, roster, MIN_OVERLAP, TOLERANCE)

        assert match.joined_at == utc(10, 5, 55)
        assert match.left_at == utc(10, 6, 35)
        assert match.overlap == timedelta(minutes=30)


class TestHolderAt:
    OCC = get_window(12).occurrence(date(2025, 1, 10))

    def test_holder_who_transferred_away_still_owns_earlier_window(self):
        old = {**ASSIGNMENT, "status": AssignmentStatus.released, "released_at": utc(10, 9, 0)}
        moved = {**ASSIGNMENT, "assignment_id": 8, "slot_index": 20, "created_at": utc(10, 9, 0)}

        assert holder_at(self.OCC, [moved, old]) is old

    def test_successor_owns_windows_after_the_handover(self):
        old = {**ASSIGNMENT, "status": AssignmentStatus.released, "released_at": utc(9, 12, 0)}
        new = {**ASSIGNMENT, "assignment_id": 9, "holder_id": 50, "created_at": utc(9, 13, 0)}

        assert holder_at(self.OCC, [old, new]) is new

    def test_slot_claimed_after_window_has_no_holder(self):
        late = {**ASSIGNMENT, "created_at": utc(10, 6, 40)}

        assert holder_at(self.OCC, [late]) is None


class TestCatchUpAfterTransfer:
    @pytest.mark.asyncio
    async def test_previous_holder_is_reconciled_for_the_old_slot(self):
        """Grace held slot 5 until 09:00 and then moved to slot 10; catch-up still judges slot 5."""
        from vigil.reconciler import run_catch_up

        now = utc(10, 12, 0)
        old = {
            **ASSIGNMENT,
            "slot_index": 5,
            "status": AssignmentStatus.released,
            "released_at": utc(10, 9, 0),
        }
        moved = {**ASSIGNMENT, "assignment_id": 8, "slot_index": 10, "created_at": utc(10, 9, 0)}

        with patch("vigil.reconciler.get_connection") as mock_conn, patch(
            "vigil.reconciler.list_assignments_held_between",
            new_callable=AsyncMock,
            return_value=[old, moved],
        ) as mock_held, patch(
            "vigil.reconciler.get_reconciled_windows", new_callable=AsyncMock, return_value=set()
        ), patch(
            "vigil.reconciler.fetch_roster", new_callable=AsyncMock, return_value=RosterAvailable([])
        ), patch(
            "vigil.reconciler.reconcile_window", new_callable=AsyncMock, return_value=MISSED
        ) as mock_window:
            conn = _mock_db(mock_conn)
            await run_catch_up(now=now)

        mock_held.assert_awaited_once_with(conn, utc(8, 11, 30), now)
        judged = {
            (call.args[0].slot_index, call.args[0].on): call.args[1]
            for call in mock_window.await_args_list
        }
        assert judged[(5, date(2025, 1, 9))] is old
        assert judged[(5, date(2025, 1, 10))] is old
        assert judged[(10, date(2025, 1, 10))] is None
