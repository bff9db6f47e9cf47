"""FastAPI application factory for Productflow.

Creates an HTTP host around a ``WorkflowEngine`` with:
- CORS middleware for cross-origin requests
- Request logging middleware with correlation IDs
- Database connection lifecycle management (SQL storage)
- A periodic cleanup loop for stale edit sessions and reviewer schedules

Example usage:
    >>> from productflow.config import ProductflowConfig
    >>> from productflow.web.app import create_app
    >>>
    >>> app = create_app(ProductflowConfig())
    >>>
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from productflow import __version__
from productflow.config import ProductflowConfig
from productflow.database.connection import get_engine, get_session_factory
from productflow.engine import WorkflowEngine
from productflow.logging import get_logger
from productflow.storage import SqlStorage
from productflow.web.middleware import RequestLoggingMiddleware
from productflow.web.routes import (
    create_audit_router,
    create_campaigns_router,
    create_health_router,
    create_records_router,
    create_reviewers_router,
    create_sessions_router,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = get_logger(__name__)


async def _cleanup_loop(engine: WorkflowEngine, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        purged = engine.cleanup()
        if any(purged.values()):
            logger.info("periodic_cleanup", **purged)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage the engine, database pool and cleanup loop.

    When ``create_app`` was given an engine it is used as-is and no
    database pool is opened; otherwise an engine backed by ``SqlStorage``
    is built from configuration.
    """
    config: ProductflowConfig = app.state.config
    logger.info("app_startup_begin", host=config.web.host, port=config.web.port)

    db_engine: AsyncEngine | None = None
    if app.state.workflow_engine is None:
        db_engine = get_engine(config.database)
        storage = SqlStorage(get_session_factory(db_engine))
        app.state.workflow_engine = WorkflowEngine(config=config, storage=storage)
        logger.info(
            "database_pool_initialized",
            pool_size=config.database.pool_size,
            max_overflow=config.database.max_overflow,
        )

    engine: WorkflowEngine = app.state.workflow_engine
    cleanup_task = asyncio.create_task(
        _cleanup_loop(engine, config.edit_guard.cleanup_interval_seconds),
        name="productflow-cleanup",
    )

    yield

    logger.info("app_shutdown_begin")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass
    await engine.shutdown()
    if db_engine is not None:
        await db_engine.dispose()
        logger.info("database_pool_disposed")


def create_app(
    config: ProductflowConfig | None = None,
    engine: WorkflowEngine | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Optional configuration. Defaults to the engine's config, or
            a default ``ProductflowConfig``.
        engine: Optional pre-built engine (tests, embedded hosts). When
            omitted the lifespan builds one over SQL storage.

    Returns:
        Configured FastAPI application instance.
    """
    if config is None:
        config = engine.config if engine is not None else ProductflowConfig()

    app = FastAPI(
        title="Productflow",
        version=__version__,
        description="Product lifecycle workflow engine",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.workflow_engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.web.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(create_health_router())
    app.include_router(create_records_router())
    app.include_router(create_sessions_router())
    app.include_router(create_campaigns_router())
    app.include_router(create_audit_router())
    app.include_router(create_reviewers_router())

    logger.info("app_created", cors_origins=config.web.cors_origins, version=__version__)
    return app
