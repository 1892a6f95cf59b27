"""Holder profile queries using SQLAlchemy Core."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncConnection

from ..tables import holders


async def get_holder(conn: AsyncConnection, holder_id: int) -> dict[str, Any] | None:
    """Get a holder by ID."""
    result = await conn.execute(select(holders).where(holders.c.holder_id == holder_id))
    row = result.mappings().first()
    return dict(row) if row else None


async def get_holder_by_phone(
    conn: AsyncConnection,
    phone_number: str,
) -> dict[str, Any] | None:
    """Get a holder by E.164 phone number (used for inbound messages)."""
    result = await conn.execute(
        select(holders).where(holders.c.phone_number == phone_number)
    )
    row = result.mappings().first()
    return dict(row) if row else None


async def get_holder_by_email(
    conn: AsyncConnection,
    email: str,
) -> dict[str, Any] | None:
    """Get a holder by email, case-insensitively."""
    result = await conn.execute(
        select(holders).where(func.lower(holders.c.email) == email.strip().lower())
    )
    row = result.mappings().first()
    return dict(row) if row else None


async def get_admin_holders(conn: AsyncConnection) -> list[dict[str, Any]]:
    result = await conn.execute(
        select(holders).where(holders.c.is_admin.is_(True)).order_by(holders.c.holder_id)
    )
    return [dict(row) for row in result.mappings()]


async def create_holder(
    conn: AsyncConnection,
    display_name: str,
    email: str | None = None,
    phone_number: str | None = None,
    timezone_name: str | None = None,
    is_admin: bool = False,
) -> dict[str, Any]:
    """Create a holder and return the created record."""
    result = await conn.execute(
        insert(holders)
        .values(
            display_name=display_name,
            email=email,
            phone_number=phone_number,
            timezone=timezone_name,
            is_admin=is_admin,
        )
        .returning(holders)
    )
    return dict(result.mappings().first())


async def update_holder(
    conn: AsyncConnection,
    holder_id: int,
    **updates: Any,
) -> dict[str, Any] | None:
    updates["updated_at"] = datetime.now(timezone.utc)
    result = await conn.execute(
        update(holders)
        .where(holders.c.holder_id == holder_id)
        .values(**updates)
        .returning(holders)
    )
    row = result.mappings().first()
    return dict(row) if row else None
