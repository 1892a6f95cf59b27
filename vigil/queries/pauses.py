"""Pause window queries."""

from datetime import datetime
from typing import Any

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncConnection

from ..tables import pause_windows


async def create_pause_window(
    conn: AsyncConnection,
    holder_id: int,
    starts_at: datetime,
    ends_at: datetime,
    reason: str | None = None,
) -> dict[str, Any]:
    result = await conn.execute(
        insert(pause_windows)
        .values(holder_id=holder_id, starts_at=starts_at, ends_at=ends_at, reason=reason)
        .returning(pause_windows)
    )
    return dict(result.mappings().first())


async def get_pause_windows(
    conn: AsyncConnection,
    holder_id: int,
    ending_after: datetime | None = None,
) -> list[dict[str, Any]]:
    """A holder's pause windows ordered by start, optionally only unfinished ones."""
    query = select(pause_windows).where(pause_windows.c.holder_id == holder_id)
    if ending_after is not None:
        query = query.where(pause_windows.c.ends_at >= ending_after)
    result = await conn.execute(query.order_by(pause_windows.c.starts_at))
    return [dict(row) for row in result.mappings()]


async def find_overlapping_pause(
    conn: AsyncConnection,
    holder_id: int,
    starts_at: datetime,
    ends_at: datetime,
) -> dict[str, Any] | None:
    """First existing window of the holder that intersects [starts_at, ends_at)."""
    result = await conn.execute(
        select(pause_windows)
        .where(
            pause_windows.c.holder_id == holder_id,
            pause_windows.c.starts_at < ends_at,
            pause_windows.c.ends_at > starts_at,
        )
        .order_by(pause_windows.c.starts_at)
        .limit(1)
    )
    row = result.mappings().first()
    return dict(row) if row else None


async def get_holders_paused_at(
    conn: AsyncConnection,
    instant: datetime,
    holder_ids: list[int] | None = None,
) -> set[int]:
    """IDs of holders with a pause window covering the instant (end inclusive)."""
    query = select(pause_windows.c.holder_id).where(
        pause_windows.c.starts_at <= instant,
        pause_windows.c.ends_at >= instant,
    )
    if holder_ids is not None:
        query = query.where(pause_windows.c.holder_id.in_(holder_ids))
    result = await conn.execute(query)
    return {row.holder_id for row in result}
