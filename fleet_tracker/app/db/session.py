"""
Database session configuration.

Async SQLAlchemy engine and session factory for the live state store.
PostgreSQL (asyncpg) in production, SQLite (aiosqlite) for local runs and tests.
"""

import logging

from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from fleet_tracker.app.core.config import settings
from fleet_tracker.app.core.exceptions import StoreUnavailableError

logger = logging.getLogger("fleet_tracker.db")


def _engine_options(database_url: str) -> dict:
    """Pool sizing only applies to server databases."""
    options = {"echo": settings.db_echo, "future": True}
    if make_url(database_url).get_backend_name() != "sqlite":
        options["pool_size"] = settings.db_pool_size
        options["max_overflow"] = settings.db_max_overflow
        options["pool_pre_ping"] = True
    return options


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """
    FastAPI dependency for database sessions.

    One session per request; the gateway keeps no state between requests.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def commit_or_raise(db: AsyncSession, operation: str) -> None:
    """
    Commit the unit of work, mapping store failures to a retryable error.

    The gateway does not retry: clients resend on their own cadence.
    """
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Store write failed during %s: %s", operation, exc)
        raise StoreUnavailableError(operation) from exc
