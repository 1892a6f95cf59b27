"""Attendance record and reconciliation checkpoint queries."""

from datetime import date, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncConnection

from ..enums import AttendanceOutcome, ReconciliationStatus
from ..tables import attendance_records, holders, reconciliation_windows


async def upsert_attended(
    conn: AsyncConnection,
    holder_id: int,
    assignment_id: int,
    slot_index: int,
    attendance_date: date,
    joined_at: datetime,
    left_at: datetime,
    meeting_instance_id: str | None,
    now: datetime,
) -> bool:
    """
    Record an attended window.

    An existing "missed" record for the same (holder, date) is upgraded: late
    provider data wins over an absence. An existing "attended" record is left
    alone so that re-reconciling a window is a no-op.

    Returns:
        True if a row was inserted or upgraded
    """
    stmt = insert(attendance_records).values(
        holder_id=holder_id,
        assignment_id=assignment_id,
        slot_index=slot_index,
        attendance_date=attendance_date,
        outcome=AttendanceOutcome.attended,
        joined_at=joined_at,
        left_at=left_at,
        meeting_instance_id=meeting_instance_id,
    )
    stmt = stmt.on_conflict_do_update(
        constraint="attendance_records_holder_date_unique",
        set_={
            "outcome": AttendanceOutcome.attended,
            "joined_at": stmt.excluded.joined_at,
            "left_at": stmt.excluded.left_at,
            "meeting_instance_id": stmt.excluded.meeting_instance_id,
            "assignment_id": stmt.excluded.assignment_id,
            "updated_at": now,
        },
        where=attendance_records.c.outcome == AttendanceOutcome.missed,
    )
    result = await conn.execute(stmt)
    return result.rowcount > 0


async def insert_missed(
    conn: AsyncConnection,
    holder_id: int,
    assignment_id: int,
    slot_index: int,
    attendance_date: date,
) -> bool:
    """
    Record a missed window unless any record already exists for that date.

    Returns:
        True if the row was inserted (the caller counts the miss only then)
    """
    stmt = insert(attendance_records).values(
        holder_id=holder_id,
        assignment_id=assignment_id,
        slot_index=slot_index,
        attendance_date=attendance_date,
        outcome=AttendanceOutcome.missed,
    )
    stmt = stmt.on_conflict_do_nothing(
        constraint="attendance_records_holder_date_unique",
    )
    result = await conn.execute(stmt)
    return result.rowcount > 0


async def get_attendance_for_holder(
    conn: AsyncConnection,
    holder_id: int,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """A holder's records, most recent first."""
    query = (
        select(attendance_records)
        .where(attendance_records.c.holder_id == holder_id)
        .order_by(attendance_records.c.attendance_date.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    result = await conn.execute(query)
    return [dict(row) for row in result.mappings()]


async def list_attendance(
    conn: AsyncConnection,
    since: date,
    until: date,
    holder_id: int | None = None,
) -> list[dict[str, Any]]:
    """Records in [since, until] with holder names, for the admin view."""
    query = (
        select(attendance_records, holders.c.display_name, holders.c.email)
        .join(holders, holders.c.holder_id == attendance_records.c.holder_id)
        .where(
            attendance_records.c.attendance_date >= since,
            attendance_records.c.attendance_date <= until,
        )
    )
    if holder_id is not None:
        query = query.where(attendance_records.c.holder_id == holder_id)
    query = query.order_by(
        attendance_records.c.attendance_date.desc(), attendance_records.c.slot_index
    )
    result = await conn.execute(query)
    return [dict(row) for row in result.mappings()]


# =============================================================================
# Reconciliation checkpoints
# =============================================================================


async def mark_window(
    conn: AsyncConnection,
    slot_index: int,
    window_date: date,
    status: ReconciliationStatus,
    now: datetime,
    error: str | None = None,
) -> None:
    """
    Record a reconciliation attempt for one slot occurrence.

    A window already marked reconciled never goes back to pending or
    unavailable.
    """
    stmt = insert(reconciliation_windows).values(
        slot_index=slot_index,
        window_date=window_date,
        status=status,
        attempts=1,
        last_checked_at=now,
        last_error=error,
    )
    stmt = stmt.on_conflict_do_update(
        constraint="reconciliation_windows_slot_date_unique",
        set_={
            "status": stmt.excluded.status,
            "attempts": reconciliation_windows.c.attempts + 1,
            "last_checked_at": stmt.excluded.last_checked_at,
            "last_error": stmt.excluded.last_error,
        },
        where=reconciliation_windows.c.status != ReconciliationStatus.reconciled,
    )
    await conn.execute(stmt)


async def get_reconciled_windows(
    conn: AsyncConnection,
    since: date,
    until: date,
) -> set[tuple[int, date]]:
    """(slot_index, window_date) pairs already fully reconciled in the range."""
    result = await conn.execute(
        select(reconciliation_windows.c.slot_index, reconciliation_windows.c.window_date)
        .where(
            reconciliation_windows.c.status == ReconciliationStatus.reconciled,
            reconciliation_windows.c.window_date >= since,
            reconciliation_windows.c.window_date <= until,
        )
    )
    return {(row.slot_index, row.window_date) for row in result}


async def list_windows(
    conn: AsyncConnection,
    status: ReconciliationStatus | None = None,
    limit: int = 100,
) -> list[dict[str, Any]]:
    query = select(reconciliation_windows)
    if status is not None:
        query = query.where(reconciliation_windows.c.status == status)
    query = query.order_by(
        reconciliation_windows.c.window_date.desc(),
        reconciliation_windows.c.slot_index.desc(),
    ).limit(limit)
    result = await conn.execute(query)
    return [dict(row) for row in result.mappings()]
