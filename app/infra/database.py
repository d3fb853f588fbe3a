"""
Database Engine and Sessions

Async SQLAlchemy 2.0 engine for the PostgreSQL scheduling store and patient
directory. Connections run in UTC so ``tstzrange`` bounds come back as UTC
datetimes; slot times are converted to the clinic zone in Python.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.config import settings
from app.models.database import Base

logger = logging.getLogger(__name__)

# Extensions the schema depends on (exclusion constraint on doctor_id + range)
REQUIRED_EXTENSIONS = ("btree_gist",)


def connect_args(timeout: float) -> dict:
    """asyncpg options: UTC sessions, bounded connect and statement time."""
    return {
        "timeout": timeout,
        "command_timeout": timeout,
        "server_settings": {
            "timezone": "UTC",
            "statement_timeout": str(int(timeout * 1000)),
        },
    }


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    poolclass=NullPool,
    connect_args=connect_args(settings.database_timeout_seconds),
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Session with commit on success and rollback on error.

    Usage:
        async with get_db_context() as db:
            await db.execute(text("SELECT 1"))
    """
    session = async_session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db() -> None:
    """
    Create required extensions and all tables.

    Development only; production schemas are managed with migrations.
    """
    async with engine.begin() as conn:
        for extension in REQUIRED_EXTENSIONS:
            await conn.execute(text(f"CREATE EXTENSION IF NOT EXISTS {extension}"))
        await conn.run_sync(Base.metadata.create_all)


async def missing_extensions() -> list[str]:
    """Required extensions not installed in the connected database."""
    async with get_db_context() as db:
        result = await db.execute(text("SELECT extname FROM pg_extension"))
        installed = {row[0] for row in result}
    return [name for name in REQUIRED_EXTENSIONS if name not in installed]


async def close_db() -> None:
    """Dispose the engine (application shutdown)."""
    await engine.dispose()


async def check_db_health() -> bool:
    """True if the database answers and has the required extensions."""
    try:
        missing = await missing_extensions()
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
    if missing:
        logger.warning(f"Database is missing extensions: {', '.join(missing)}")
        return False
    return True
