"""Reminder preference queries."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncConnection

from ..tables import reminder_preferences


async def get_reminder_preference(
    conn: AsyncConnection,
    holder_id: int,
) -> dict[str, Any] | None:
    result = await conn.execute(
        select(reminder_preferences).where(reminder_preferences.c.holder_id == holder_id)
    )
    row = result.mappings().first()
    return dict(row) if row else None


async def upsert_reminder_preference(
    conn: AsyncConnection,
    holder_id: int,
    **values: Any,
) -> dict[str, Any]:
    """Create the holder's preferences or update only the given fields."""
    values["updated_at"] = datetime.now(timezone.utc)
    stmt = insert(reminder_preferences).values(holder_id=holder_id, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["holder_id"],
        set_={key: stmt.excluded[key] for key in values},
    ).returning(reminder_preferences)
    result = await conn.execute(stmt)
    return dict(result.mappings().first())
