"""Slot and assignment queries."""

from datetime import datetime
from typing import Any

from sqlalchemy import insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncConnection

from ..enums import AssignmentStatus
from ..tables import assignments, holders, slots

LIVE_STATUSES = (AssignmentStatus.active, AssignmentStatus.paused)


async def lock_slot(conn: AsyncConnection, slot_index: int) -> dict[str, Any] | None:
    """
    Lock a slot row for the rest of the transaction.

    Claims and transfers lock the slot first so that two holders racing for
    the same slot serialize on it.
    """
    result = await conn.execute(
        select(slots).where(slots.c.slot_index == slot_index).with_for_update()
    )
    row = result.mappings().first()
    return dict(row) if row else None


async def set_slot_available(
    conn: AsyncConnection,
    slot_index: int,
    is_available: bool,
) -> None:
    await conn.execute(
        update(slots)
        .where(slots.c.slot_index == slot_index)
        .values(is_available=is_available)
    )


async def get_assignment(
    conn: AsyncConnection,
    assignment_id: int,
    for_update: bool = False,
) -> dict[str, Any] | None:
    query = select(assignments).where(assignments.c.assignment_id == assignment_id)
    if for_update:
        query = query.with_for_update()
    result = await conn.execute(query)
    row = result.mappings().first()
    return dict(row) if row else None


async def get_live_assignment(
    conn: AsyncConnection,
    holder_id: int,
    for_update: bool = False,
) -> dict[str, Any] | None:
    """Get the holder's active or paused assignment, if any."""
    query = select(assignments).where(
        assignments.c.holder_id == holder_id,
        assignments.c.status.in_(LIVE_STATUSES),
    )
    if for_update:
        query = query.with_for_update()
    result = await conn.execute(query)
    row = result.mappings().first()
    return dict(row) if row else None


async def get_live_assignment_for_slot(
    conn: AsyncConnection,
    slot_index: int,
    for_update: bool = False,
) -> dict[str, Any] | None:
    query = select(assignments).where(
        assignments.c.slot_index == slot_index,
        assignments.c.status.in_(LIVE_STATUSES),
    )
    if for_update:
        query = query.with_for_update()
    result = await conn.execute(query)
    row = result.mappings().first()
    return dict(row) if row else None


async def create_assignment(
    conn: AsyncConnection,
    holder_id: int,
    slot_index: int,
    status: AssignmentStatus = AssignmentStatus.active,
    missed_count: int = 0,
) -> dict[str, Any]:
    """
    Insert a live assignment.

    Raises:
        IntegrityError: If the holder or slot already has a live assignment
            (partial unique indexes uq_assignments_live_holder/_slot)
    """
    result = await conn.execute(
        insert(assignments)
        .values(
            holder_id=holder_id,
            slot_index=slot_index,
            status=status,
            missed_count=missed_count,
        )
        .returning(assignments)
    )
    return dict(result.mappings().first())


async def update_assignment(
    conn: AsyncConnection,
    assignment_id: int,
    **values: Any,
) -> None:
    await conn.execute(
        update(assignments)
        .where(assignments.c.assignment_id == assignment_id)
        .values(**values)
    )


def _live_assignments_query():
    return (
        select(
            assignments,
            holders.c.display_name,
            holders.c.email,
            holders.c.phone_number,
            holders.c.timezone.label("holder_timezone"),
            slots.c.label.label("slot_label"),
        )
        .join(holders, holders.c.holder_id == assignments.c.holder_id)
        .join(slots, slots.c.slot_index == assignments.c.slot_index)
        .where(assignments.c.status.in_(LIVE_STATUSES))
    )


async def list_live_assignments(
    conn: AsyncConnection,
    slot_indexes: set[int] | None = None,
) -> list[dict[str, Any]]:
    """Active and paused assignments with holder details, ordered by slot."""
    query = _live_assignments_query()
    if slot_indexes is not None:
        query = query.where(assignments.c.slot_index.in_(slot_indexes))
    result = await conn.execute(query.order_by(assignments.c.slot_index))
    return [dict(row) for row in result.mappings()]


async def list_assignments_held_between(
    conn: AsyncConnection,
    since: datetime,
    until: datetime,
) -> list[dict[str, Any]]:
    """
    Assignments (live or released) that held their slot at some point in
    [since, until), with holder details.

    A transfer or release leaves the old row behind with released_at set,
    so past windows resolve to whoever held the slot back then.
    """
    query = (
        select(
            assignments,
            holders.c.display_name,
            holders.c.email,
            holders.c.phone_number,
            holders.c.timezone.label("holder_timezone"),
            slots.c.label.label("slot_label"),
        )
        .join(holders, holders.c.holder_id == assignments.c.holder_id)
        .join(slots, slots.c.slot_index == assignments.c.slot_index)
        .where(
            assignments.c.created_at < until,
            or_(
                assignments.c.released_at.is_(None),
                assignments.c.released_at > since,
            ),
        )
        .order_by(assignments.c.slot_index, assignments.c.created_at)
    )
    result = await conn.execute(query)
    return [dict(row) for row in result.mappings()]


async def list_assignments(
    conn: AsyncConnection,
    status: AssignmentStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """All assignments (including released) for the admin view, newest first."""
    query = (
        select(
            assignments,
            holders.c.display_name,
            holders.c.email,
            slots.c.label.label("slot_label"),
        )
        .join(holders, holders.c.holder_id == assignments.c.holder_id)
        .join(slots, slots.c.slot_index == assignments.c.slot_index)
    )
    if status is not None:
        query = query.where(assignments.c.status == status)
    query = (
        query.order_by(assignments.c.created_at.desc(), assignments.c.assignment_id.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await conn.execute(query)
    return [dict(row) for row in result.mappings()]


async def list_slots_with_holders(conn: AsyncConnection) -> list[dict[str, Any]]:
    """The 48-slot catalog with the live holder (if any) of each slot."""
    query = (
        select(
            slots.c.slot_index,
            slots.c.label,
            slots.c.is_available,
            assignments.c.holder_id,
            assignments.c.status,
            holders.c.display_name,
        )
        .select_from(
            slots.outerjoin(
                assignments,
                (assignments.c.slot_index == slots.c.slot_index)
                & assignments.c.status.in_(LIVE_STATUSES),
            ).outerjoin(holders, holders.c.holder_id == assignments.c.holder_id)
        )
        .order_by(slots.c.slot_index)
    )
    result = await conn.execute(query)
    return [dict(row) for row in result.mappings()]
