"""Tests for claiming, releasing and transferring slots."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from vigil.enums import AssignmentStatus
from vigil.errors import (
    HolderAlreadyAssignedError,
    NotAssignedError,
    SlotAlreadyHeldError,
    SlotNotFoundError,
)
from vigil.lifecycle import RELEASE_ADMIN, RELEASE_TRANSFER, ReleaseRequested

NOW = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)


def _mock_db(mock_get_tx):
    conn = AsyncMock()
    mock_get_tx.return_value.__aenter__.return_value = conn
    mock_get_tx.return_value.__aexit__.return_value = None
    return conn


def _assignment(**overrides):
    row = {
        "assignment_id": 7,
        "holder_id": 42,
        "slot_index": 12,
        "status": AssignmentStatus.active,
        "missed_count": 0,
    }
    row.update(overrides)
    return row


class TestClaimSlot:
    @pytest.mark.asyncio
    async def test_claims_free_slot(self):
        from vigil.registry import claim_slot

        with patch("vigil.registry.get_transaction") as mock_tx, patch(
            "vigil.registry.lock_slot", new_callable=AsyncMock, return_value={"slot_index": 12}
        ), patch(
            "vigil.registry.get_live_assignment", new_callable=AsyncMock, return_value=None
        ), patch(
            "vigil.registry.get_live_assignment_for_slot", new_callable=AsyncMock, return_value=None
        ), patch(
            "vigil.registry.create_assignment", new_callable=AsyncMock, return_value=_assignment()
        ) as mock_create, patch(
            "vigil.registry.set_slot_available", new_callable=AsyncMock
        ) as mock_available:
            conn = _mock_db(mock_tx)
            assignment = await claim_slot(42, 12)

        assert assignment["slot_index"] == 12
        mock_create.assert_awaited_once_with(conn, 42, 12)
        mock_available.assert_awaited_once_with(conn, 12, False)

    @pytest.mark.asyncio
    async def test_rejects_unknown_slot_without_touching_db(self):
        from vigil.registry import claim_slot

        with patch("vigil.registry.get_transaction") as mock_tx:
            with pytest.raises(SlotNotFoundError):
                await claim_slot(42, 48)
        mock_tx.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejects_second_slot_for_holder(self):
        from vigil.registry import claim_slot

        with patch("vigil.registry.get_transaction") as mock_tx, patch(
            "vigil.registry.lock_slot", new_callable=AsyncMock, return_value={"slot_index": 20}
        ), patch(
            "vigil.registry.get_live_assignment",
            new_callable=AsyncMock,
            return_value=_assignment(slot_index=12),
        ), patch("vigil.registry.create_assignment", new_callable=AsyncMock) as mock_create:
            _mock_db(mock_tx)
            with pytest.raises(HolderAlreadyAssignedError):
                await claim_slot(42, 20)
        mock_create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reclaiming_own_slot_is_a_no_op(self):
        from vigil.registry import claim_slot

        existing = _assignment(slot_index=12)
        with patch("vigil.registry.get_transaction") as mock_tx, patch(
            "vigil.registry.lock_slot", new_callable=AsyncMock, return_value={"slot_index": 12}
        ), patch(
            "vigil.registry.get_live_assignment", new_callable=AsyncMock, return_value=existing
        ), patch("vigil.registry.create_assignment", new_callable=AsyncMock) as mock_create:
            _mock_db(mock_tx)
            assignment = await claim_slot(42, 12)

        assert assignment is existing
        mock_create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejects_slot_held_by_someone_else(self):
        from vigil.registry import claim_slot

        with patch("vigil.registry.get_transaction") as mock_tx, patch(
            "vigil.registry.lock_slot", new_callable=AsyncMock, return_value={"slot_index": 12}
        ), patch(
            "vigil.registry.get_live_assignment", new_callable=AsyncMock, return_value=None
        ), patch(
            "vigil.registry.get_live_assignment_for_slot",
            new_callable=AsyncMock,
            return_value=_assignment(holder_id=99),
        ):
            _mock_db(mock_tx)
            with pytest.raises(SlotAlreadyHeldError):
                await claim_slot(42, 12)

    @pytest.mark.asyncio
    async def test_concurrent_insert_conflict_maps_to_slot_held(self):
        """The losing INSERT of a race surfaces as SlotAlreadyHeld."""
        from vigil.registry import claim_slot

        conflict = IntegrityError(
            "INSERT INTO assignments ...",
            {},
            Exception('duplicate key value violates unique constraint "uq_assignments_live_slot"'),
        )
        with patch("vigil.registry.get_transaction") as mock_tx, patch(
            "vigil.registry.lock_slot", new_callable=AsyncMock, return_value={"slot_index": 12}
        ), patch(
            "vigil.registry.get_live_assignment", new_callable=AsyncMock, return_value=None
        ), patch(
            "vigil.registry.get_live_assignment_for_slot", new_callable=AsyncMock, return_value=None
        ), patch(
            "vigil.registry.create_assignment", new_callable=AsyncMock, side_effect=conflict
        ):
            _mock_db(mock_tx)
            with pytest.raises(SlotAlreadyHeldError):
                await claim_slot(42, 12)


class TestReleaseSlot:
    @pytest.mark.asyncio
    async def test_release_without_assignment(self):
        from vigil.registry import release_slot

        with patch("vigil.registry.get_transaction") as mock_tx, patch(
            "vigil.registry.get_live_assignment", new_callable=AsyncMock, return_value=None
        ):
            _mock_db(mock_tx)
            with pytest.raises(NotAssignedError):
                await release_slot(42)

    @pytest.mark.asyncio
    async def test_force_release_applies_admin_release_and_runs_side_effects(self):
        from vigil.registry import force_release

        assignment = _assignment()
        with patch("vigil.registry.get_transaction") as mock_tx, patch(
            "vigil.registry.get_live_assignment", new_callable=AsyncMock, return_value=assignment
        ), patch("vigil.registry.apply_event", new_callable=AsyncMock) as mock_apply, patch(
            "vigil.registry.after_commit", new_callable=AsyncMock
        ) as mock_after:
            conn = _mock_db(mock_tx)
            await force_release(42, now=NOW)

        mock_apply.assert_awaited_once_with(
            conn, assignment, ReleaseRequested(RELEASE_ADMIN), now=NOW
        )
        mock_after.assert_awaited_once_with(mock_apply.return_value, now=NOW)


class TestTransferSlot:
    @pytest.mark.asyncio
    async def test_transfer_carries_status_and_misses(self):
        from vigil.registry import transfer_slot

        current = _assignment(slot_index=12, status=AssignmentStatus.paused, missed_count=2)
        with patch("vigil.registry.get_transaction") as mock_tx, patch(
            "vigil.registry.get_live_assignment", new_callable=AsyncMock, return_value=current
        ), patch(
            "vigil.registry.lock_slot", new_callable=AsyncMock, return_value={"slot_index": 1}
        ) as mock_lock, patch(
            "vigil.registry.get_live_assignment_for_slot", new_callable=AsyncMock, return_value=None
        ), patch("vigil.registry.apply_event", new_callable=AsyncMock) as mock_apply, patch(
            "vigil.registry.create_assignment",
            new_callable=AsyncMock,
            return_value=_assignment(assignment_id=8, slot_index=3),
        ) as mock_create, patch(
            "vigil.registry.set_slot_available", new_callable=AsyncMock
        ) as mock_available, patch(
            "vigil.registry.after_commit", new_callable=AsyncMock
        ):
            conn = _mock_db(mock_tx)
            assignment = await transfer_slot(42, 3, now=NOW)

        assert assignment["slot_index"] == 3
        # Lower index locked first
        assert [c.args[1] for c in mock_lock.await_args_list] == [3, 12]
        mock_apply.assert_awaited_once_with(
            conn, current, ReleaseRequested(RELEASE_TRANSFER), now=NOW
        )
        mock_create.assert_awaited_once_with(
            conn, 42, 3, status=AssignmentStatus.paused, missed_count=2
        )
        mock_available.assert_awaited_once_with(conn, 3, False)

    @pytest.mark.asyncio
    async def test_transfer_to_held_slot_fails(self):
        from vigil.registry import transfer_slot

        with patch("vigil.registry.get_transaction") as mock_tx, patch(
            "vigil.registry.get_live_assignment", new_callable=AsyncMock, return_value=_assignment()
        ), patch(
            "vigil.registry.lock_slot", new_callable=AsyncMock, return_value={"slot_index": 1}
        ), patch(
            "vigil.registry.get_live_assignment_for_slot",
            new_callable=AsyncMock,
            return_value=_assignment(holder_id=99, slot_index=3),
        ), patch("vigil.registry.apply_event", new_callable=AsyncMock) as mock_apply:
            _mock_db(mock_tx)
            with pytest.raises(SlotAlreadyHeldError):
                await transfer_slot(42, 3, now=NOW)
        mock_apply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transfer_without_assignment(self):
        from vigil.registry import transfer_slot

        with patch("vigil.registry.get_transaction") as mock_tx, patch(
            "vigil.registry.get_live_assignment", new_callable=AsyncMock, return_value=None
        ):
            _mock_db(mock_tx)
            with pytest.raises(NotAssignedError):
                await transfer_slot(42, 3, now=NOW)
