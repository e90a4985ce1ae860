"""
Database connection and session management.

The engine is created on first use so that importing the package never
requires a database driver.
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)

from rolegate.core.config import settings

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get (or create) the application engine."""
    global _engine
    if _engine is None:
        options = {"echo": settings.database.echo}
        if not settings.database.url.startswith("sqlite"):
            options.update(
                pool_size=settings.database.pool_size,
                max_overflow=settings.database.pool_overflow,
                pool_timeout=settings.database.pool_timeout,
            )
        _engine = create_async_engine(settings.database.url, **options)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get (or create) the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session per request."""
    async with get_session_factory()() as session:
        yield session


async def init_db() -> None:
    """Initialize database (create tables)."""
    from rolegate.models.base import Base

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
