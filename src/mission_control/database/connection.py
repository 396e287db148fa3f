"""Database connection management for Mission Control.

Factory functions for the SQLAlchemy async engine and session factory,
configured from DatabaseConfig.

Example usage:
    >>> from mission_control.config import DatabaseConfig
    >>> from mission_control.database.connection import get_engine, get_session_factory
    >>>
    >>> engine = get_engine(DatabaseConfig(url="sqlite+aiosqlite:///mission_control.db"))
    >>> SessionFactory = get_session_factory(engine)
    >>>
    >>> async with SessionFactory() as session:
    ...     result = await session.execute(select(Task))
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from mission_control.config import DatabaseConfig


def get_engine(config: DatabaseConfig, pooled: bool = True) -> AsyncEngine:
    """Create an async SQLAlchemy engine from database configuration.

    Pool sizing only applies to server databases; SQLite URLs use the
    driver's default pool.

    Args:
        config: Database configuration containing URL, pool settings,
                and SQL echo preference.
        pooled: Keep connections open between uses. Short-lived processes
                pass False so every connection is closed on release.

    Returns:
        Configured AsyncEngine instance.
    """
    kwargs: dict[str, Any] = {"echo": config.echo}
    if not pooled:
        kwargs["poolclass"] = NullPool
    elif not config.url.startswith("sqlite"):
        kwargs["pool_size"] = config.pool_size
        kwargs["max_overflow"] = config.max_overflow
    return create_async_engine(config.url, **kwargs)


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the given engine.

    Sessions use expire_on_commit=False so attributes stay readable after
    commit without lazy loads.

    Args:
        engine: AsyncEngine to bind sessions to.

    Returns:
        Configured async_sessionmaker.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
