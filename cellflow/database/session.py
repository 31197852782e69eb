"""Database session management using SQLModel + async SQLAlchemy."""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from cellflow.config import get_settings


_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def _engine_options(database_url: str) -> dict[str, Any]:
    settings = get_settings()
    options: dict[str, Any] = {"echo": settings.debug}
    # SQLite pools do not take sizing arguments
    if not database_url.startswith("sqlite"):
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow
    return options


def configure_engine(database_url: str | None = None) -> AsyncEngine:
    """(Re)create the engine and session factory for a database URL."""
    global _engine, _session_maker
    database_url = database_url or get_settings().database_url
    _engine = create_async_engine(database_url, **_engine_options(database_url))
    _session_maker = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return _engine


def get_engine() -> AsyncEngine:
    """Get the async engine, creating it from settings on first use."""
    if _engine is None:
        configure_engine()
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get the session factory bound to the current engine."""
    if _session_maker is None:
        configure_engine()
    return _session_maker


async def init_db() -> None:
    """Initialize metadata tables.

    Note: In production, use Alembic migrations instead.
    This is here for development convenience.
    """
    async with get_engine().begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    if _engine is not None:
        await _engine.dispose()

