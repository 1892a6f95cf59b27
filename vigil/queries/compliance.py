"""Messaging compliance state queries."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncConnection

from ..tables import compliance_states


async def get_compliance_state(
    conn: AsyncConnection,
    holder_id: int,
    for_update: bool = False,
) -> dict[str, Any] | None:
    query = select(compliance_states).where(compliance_states.c.holder_id == holder_id)
    if for_update:
        query = query.with_for_update()
    result = await conn.execute(query)
    row = result.mappings().first()
    return dict(row) if row else None


async def save_compliance_state(
    conn: AsyncConnection,
    holder_id: int,
    **values: Any,
) -> dict[str, Any]:
    """Insert or overwrite the holder's compliance row with the given fields."""
    values["updated_at"] = datetime.now(timezone.utc)
    stmt = insert(compliance_states).values(holder_id=holder_id, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["holder_id"],
        set_={key: stmt.excluded[key] for key in values},
    ).returning(compliance_states)
    result = await conn.execute(stmt)
    return dict(result.mappings().first())
