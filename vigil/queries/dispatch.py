"""
Dispatch log queries.

The log row is claimed before anything is sent. Only the caller whose
INSERT succeeds (or whose conditional re-claim UPDATE matches) may send.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import and_, case, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncConnection

from ..enums import DispatchCategory, DispatchStatus, SendMode
from ..tables import dispatch_log


def _key_clause(holder_id: int, category: DispatchCategory, logical_key: str):
    return and_(
        dispatch_log.c.holder_id == holder_id,
        dispatch_log.c.category == category,
        dispatch_log.c.logical_key == logical_key,
    )


async def claim_dispatch(
    conn: AsyncConnection,
    holder_id: int,
    category: DispatchCategory,
    logical_key: str,
    message_type: str,
    now: datetime,
) -> int | None:
    """
    Insert a pending row for the key.

    Returns:
        The new dispatch_id, or None if a row for the key already exists
    """
    stmt = insert(dispatch_log).values(
        holder_id=holder_id,
        category=category,
        logical_key=logical_key,
        message_type=message_type,
        status=DispatchStatus.pending,
        claimed_at=now,
    )
    stmt = stmt.on_conflict_do_nothing(
        constraint="dispatch_log_dedupe_unique",
    ).returning(dispatch_log.c.dispatch_id)
    result = await conn.execute(stmt)
    return result.scalar_one_or_none()


async def reclaim_dispatch(
    conn: AsyncConnection,
    holder_id: int,
    category: DispatchCategory,
    logical_key: str,
    retry_cap: int,
    stale_before: datetime,
    now: datetime,
) -> int | None:
    """
    Take over an existing row that may be sent again.

    A row qualifies if it is retrying below the cap, or if it has sat in
    pending since before stale_before (its sender crashed mid-send).
    """
    result = await conn.execute(
        update(dispatch_log)
        .where(
            _key_clause(holder_id, category, logical_key),
            or_(
                and_(
                    dispatch_log.c.status == DispatchStatus.retrying,
                    dispatch_log.c.retry_count < retry_cap,
                ),
                and_(
                    dispatch_log.c.status == DispatchStatus.pending,
                    dispatch_log.c.claimed_at < stale_before,
                ),
            ),
        )
        .values(status=DispatchStatus.pending, claimed_at=now)
        .returning(dispatch_log.c.dispatch_id)
    )
    return result.scalar_one_or_none()


async def mark_dispatch_sent(
    conn: AsyncConnection,
    dispatch_id: int,
    send_mode: SendMode,
    now: datetime,
) -> None:
    await conn.execute(
        update(dispatch_log)
        .where(dispatch_log.c.dispatch_id == dispatch_id)
        .values(
            status=DispatchStatus.sent,
            send_mode=send_mode,
            sent_at=now,
            error_message=None,
        )
    )


async def mark_dispatch_failed(
    conn: AsyncConnection,
    dispatch_id: int,
    error: str,
    retry_cap: int,
    send_mode: SendMode | None = None,
    terminal: bool = False,
) -> DispatchStatus:
    """
    Record a failed send attempt.

    The row becomes retrying until retry_cap attempts have failed, then
    failed. Terminal errors (bad recipient, unrenderable message) fail
    immediately.

    Returns:
        The row's new status
    """
    attempts = dispatch_log.c.retry_count + 1
    new_status = (
        DispatchStatus.failed
        if terminal
        else case(
            (attempts >= retry_cap, DispatchStatus.failed),
            else_=DispatchStatus.retrying,
        )
    )
    result = await conn.execute(
        update(dispatch_log)
        .where(dispatch_log.c.dispatch_id == dispatch_id)
        .values(
            retry_count=attempts,
            status=new_status,
            error_message=error[:1000],
            send_mode=send_mode,
        )
        .returning(dispatch_log.c.status)
    )
    return DispatchStatus(result.scalar_one())


async def get_dispatch(
    conn: AsyncConnection,
    holder_id: int,
    category: DispatchCategory,
    logical_key: str,
) -> dict[str, Any] | None:
    result = await conn.execute(
        select(dispatch_log).where(_key_clause(holder_id, category, logical_key))
    )
    row = result.mappings().first()
    return dict(row) if row else None


async def list_retrying_keys(
    conn: AsyncConnection,
    category: DispatchCategory,
    retry_cap: int,
    stale_before: datetime,
) -> set[tuple[int, str]]:
    """
    (holder_id, logical_key) of rows in the category that may be sent again.

    Matches the rows reclaim_dispatch() would take over: retrying below the
    cap, or stuck in pending since before stale_before.
    """
    result = await conn.execute(
        select(dispatch_log.c.holder_id, dispatch_log.c.logical_key).where(
            dispatch_log.c.category == category,
            or_(
                and_(
                    dispatch_log.c.status == DispatchStatus.retrying,
                    dispatch_log.c.retry_count < retry_cap,
                ),
                and_(
                    dispatch_log.c.status == DispatchStatus.pending,
                    dispatch_log.c.claimed_at < stale_before,
                ),
            ),
        )
    )
    return {(row.holder_id, row.logical_key) for row in result}


async def cancel_retrying(
    conn: AsyncConnection,
    holder_id: int,
    categories: list[DispatchCategory],
    reason: str,
) -> int:
    """Fail every retrying row of the holder in the given categories."""
    result = await conn.execute(
        update(dispatch_log)
        .where(
            dispatch_log.c.holder_id == holder_id,
            dispatch_log.c.category.in_(categories),
            dispatch_log.c.status == DispatchStatus.retrying,
        )
        .values(status=DispatchStatus.failed, error_message=reason)
    )
    return result.rowcount


async def list_dispatches(
    conn: AsyncConnection,
    status: DispatchStatus | None = None,
    category: DispatchCategory | None = None,
    holder_id: int | None = None,
    limit: int = 100,
) -> list[dict[str, Any]]:
    query = select(dispatch_log)
    if status is not None:
        query = query.where(dispatch_log.c.status == status)
    if category is not None:
        query = query.where(dispatch_log.c.category == category)
    if holder_id is not None:
        query = query.where(dispatch_log.c.holder_id == holder_id)
    query = query.order_by(dispatch_log.c.created_at.desc()).limit(limit)
    result = await conn.execute(query)
    return [dict(row) for row in result.mappings()]
