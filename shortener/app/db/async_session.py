"""Async database session management for SQLAlchemy 2.0+.

This module provides async database operations using PostgreSQL with asyncpg.
SQLite (aiosqlite) is accepted for local runs and tests.
"""

from functools import lru_cache
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shortener.app.core.config import settings
from shortener.app.core.logging import get_logger

logger = get_logger(__name__)

# Global session maker instance
_AsyncSessionLocal = None


@lru_cache(maxsize=1)
def get_async_engine(database_url: str | None = None) -> AsyncEngine:
    """Get or create the async database engine (cached singleton).

    Args:
        database_url: Optional database URL. Uses settings if not provided.

    Returns:
        AsyncEngine instance
    """
    url = database_url or settings.database_url

    if "sqlite" in url.lower():
        engine = create_async_engine(url, echo=False)
        logger.info("Created SQLite async engine")
    else:
        connect_args = {
            "command_timeout": settings.db_command_timeout,
        }
        if settings.db_ssl_mode != "disable":
            connect_args["ssl"] = settings.db_ssl_mode

        engine = create_async_engine(
            url,
            echo=False,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
            pool_pre_ping=settings.db_pool_pre_ping,
            connect_args=connect_args,
        )
        logger.info(
            f"Created PostgreSQL async engine (pool_size={settings.db_pool_size}, "
            f"max_overflow={settings.db_max_overflow})"
        )
    return engine


def make_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_async_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get the async session maker bound to the default engine."""
    global _AsyncSessionLocal
    if _AsyncSessionLocal is None:
        _AsyncSessionLocal = make_session_maker(get_async_engine())
    return _AsyncSessionLocal


async def close_async_engine(database_url: str | None = None) -> None:
    """Close the async engine.

    Call this on application shutdown to release database connections.
    """
    global _AsyncSessionLocal

    engine = get_async_engine(database_url)
    try:
        await engine.dispose()
        logger.debug("Async engine disposed successfully")
    except RuntimeError:
        # Event loop mismatch - connection already closed or different loop
        logger.debug("Engine dispose encountered RuntimeError (event loop mismatch)")

    # Clear cache to allow recreation on next startup
    get_async_engine.cache_clear()
    _AsyncSessionLocal = None


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions.

    Uses the session maker the application built at startup, falling back
    to the default engine.

    Transaction handling:
    - Successful requests: changes are automatically committed
    - Exceptions: changes are rolled back, exception is re-raised
    """
    session_maker = getattr(request.app.state, "session_maker", None) or get_async_session_maker()
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
