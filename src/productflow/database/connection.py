"""Database connection management for Productflow.

Factory functions for creating SQLAlchemy async engines and session
factories, configured from the application's DatabaseConfig.

Example usage:
    >>> from productflow.config import DatabaseConfig
    >>> from productflow.database.connection import get_engine, get_session_factory
    >>>
    >>> engine = get_engine(DatabaseConfig(url="postgresql+asyncpg://localhost/productflow"))
    >>> SessionFactory = get_session_factory(engine)
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from productflow.config import DatabaseConfig


def get_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create an async SQLAlchemy engine from database configuration.

    Pool sizing only applies to pooled drivers; SQLite URLs get the
    driver's default pool.

    Args:
        config: Database configuration containing URL, pool settings,
                and SQL echo preference.

    Returns:
        Configured AsyncEngine instance.
    """
    if config.url.startswith("sqlite"):
        return create_async_engine(config.url, echo=config.echo)
    return create_async_engine(
        config.url,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        echo=config.echo,
    )


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the given engine.

    Sessions use expire_on_commit=False so attributes stay readable after
    commit without triggering lazy loads.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
