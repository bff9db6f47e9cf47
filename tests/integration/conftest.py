"""Pytest fixtures for integration tests.

Provides async database fixtures for exercising the SQL storage
collaborator against a SQLite file database. The production system uses
PostgreSQL through asyncpg; these tests use aiosqlite so the same
SQLAlchemy code paths run without a server.

A file database is used rather than ``:memory:`` so every session gets
its own connection, as it would against a pooled server.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from productflow.config import DatabaseConfig, ProductflowConfig
from productflow.database import Base, get_engine, get_session_factory
from productflow.engine import WorkflowEngine
from productflow.notifications import InMemoryNotifier
from productflow.storage import SqlStorage
from productflow.web.app import create_app


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio as the async backend."""
    return "asyncio"


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'productflow.db'}"


@pytest_asyncio.fixture
async def db_engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Create a SQLite async engine with every table created.

    Yields:
        Configured AsyncEngine instance.
    """
    engine = get_engine(DatabaseConfig(url=database_url))

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return get_session_factory(db_engine)


@pytest.fixture
def sql_storage(session_factory: async_sessionmaker[AsyncSession]) -> SqlStorage:
    return SqlStorage(session_factory)


@pytest.fixture
def notifier() -> InMemoryNotifier:
    return InMemoryNotifier()


@pytest.fixture
def workflow_engine(sql_storage: SqlStorage, notifier: InMemoryNotifier) -> WorkflowEngine:
    """A workflow engine persisting through SQL storage."""
    return WorkflowEngine(config=ProductflowConfig(), storage=sql_storage, notifier=notifier)


@pytest_asyncio.fixture
async def async_client(workflow_engine: WorkflowEngine) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client around the SQL-backed engine.

    Yields:
        AsyncClient configured to test the application.
    """
    app = create_app(engine=workflow_engine)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await workflow_engine.shutdown()
