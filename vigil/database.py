"""
Async Postgres access for the slot coverage engine.

Reads use get_connection(). Writes that must keep an assignment, its slot
and its attendance rows in agreement use get_transaction(), so a failure
part-way leaves none of them changed.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from .config import get_db_max_overflow, get_db_pool_recycle_seconds, get_db_pool_size

_engine: AsyncEngine | None = None

# Spellings of the Postgres scheme accepted in DATABASE_URL
POSTGRES_SCHEMES = (
    "postgresql+asyncpg://",
    "postgresql+psycopg2://",
    "postgresql://",
    "postgres://",
)


def with_driver(database_url: str, scheme: str) -> str:
    """
    Rewrite a Postgres URL to use the given driver scheme.

    Raises:
        ValueError: Not a Postgres URL
    """
    for known in POSTGRES_SCHEMES:
        if database_url.startswith(known):
            return scheme + database_url[len(known):]
    # Only the scheme goes into the message; the rest may hold a password
    raise ValueError(
        f"DATABASE_URL must be a PostgreSQL URL, not {database_url.split(':', 1)[0]}"
    )


def get_async_database_url() -> str:
    """DATABASE_URL for asyncpg."""
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable must be set.")
    return with_driver(database_url, "postgresql+asyncpg://")


def get_sync_database_url() -> str:
    """DATABASE_URL for psycopg2. Alembic runs migrations synchronously."""
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL must be set for migrations")
    return with_driver(database_url, "postgresql+psycopg2://")


def get_engine() -> AsyncEngine:
    """Get or create the async SQLAlchemy engine singleton."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            get_async_database_url(),
            echo=os.environ.get("SQL_ECHO", "").lower() == "true",
            pool_size=get_db_pool_size(),
            max_overflow=get_db_max_overflow(),
            pool_recycle=get_db_pool_recycle_seconds(),
            # Scheduler ticks can sit idle for minutes between queries
            pool_pre_ping=True,
        )
    return _engine


@asynccontextmanager
async def get_connection() -> AsyncGenerator[AsyncConnection, None]:
    """
    Read-only access.

    Usage:
        async with get_connection() as conn:
            result = await conn.execute(select(assignments))
    """
    async with get_engine().connect() as conn:
        yield conn


@asynccontextmanager
async def get_transaction() -> AsyncGenerator[AsyncConnection, None]:
    """Connection inside a transaction: commits on exit, rolls back on error."""
    async with get_engine().begin() as conn:
        yield conn


async def close_engine() -> None:
    """Dispose of the pool. Called on shutdown."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None


def is_configured() -> bool:
    return bool(os.environ.get("DATABASE_URL"))
