"""PostgreSQL connection and session management using async SQLAlchemy.

The knowledge store is the existing ``memories`` table. This module only
provides connectivity; schema creation and migrations live elsewhere.

Usage:
    from memory_rag.database import get_session_factory, check_postgres_connection

    connected = await check_postgres_connection()

    async with get_session_factory()() as session:
        result = await session.execute(select(Memory))
"""

import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from memory_rag.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy ORM models."""
    pass


# Global engine and session factory - initialized lazily
_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """Return POSTGRES_URL in asyncpg form.

    Raises:
        ConfigurationError: If POSTGRES_URL is not set
    """
    # Import here to avoid circular imports
    from memory_rag.repositories.base import ConfigurationError

    if not settings.postgres_url:
        raise ConfigurationError("POSTGRES_URL is not set", "get_database_url")
    return settings.async_postgres_url


def get_engine() -> AsyncEngine:
    """Get or create the async database engine.

    Connect and per-statement timeouts bound every knowledge-store call so a
    hung backend shows up as a failure instead of stalling the caller.

    Returns:
        AsyncEngine instance
    """
    global _engine

    if _engine is None:
        _engine = create_async_engine(
            get_database_url(),
            echo=settings.postgres_echo_sql,
            pool_size=settings.postgres_pool_size,
            max_overflow=settings.postgres_max_overflow,
            pool_pre_ping=True,
            connect_args={
                "timeout": settings.postgres_connect_timeout_seconds,
                "command_timeout": settings.postgres_command_timeout_seconds,
            },
        )
        logger.info("PostgreSQL engine created for knowledge store")

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _async_session_factory

    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    return _async_session_factory


async def check_postgres_connection() -> bool:
    """Check if PostgreSQL is connected and responsive.

    Returns:
        True if connected, False otherwise
    """
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"PostgreSQL connection check failed: {e}")
        return False


async def close_db() -> None:
    """Dispose of the engine. Call on application shutdown."""
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("PostgreSQL connections closed")
