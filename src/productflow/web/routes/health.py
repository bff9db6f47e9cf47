"""Health check endpoints for Productflow.

``/health/`` is a liveness probe. ``/health/ready`` probes the storage
collaborator with a one-record query so load balancers stop routing to
an instance whose database is unreachable.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from productflow.engine import WorkflowEngine
from productflow.errors import StorageError
from productflow.logging import get_logger
from productflow.storage import RecordFilter
from productflow.web.dependencies import get_workflow_engine

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str


class ReadinessResponse(BaseModel):
    """Readiness check response model.

    Attributes:
        status: "ok" or "unhealthy"
        storage: "connected" or "disconnected"
        active_edit_sessions: Live edit sessions held in this process
    """

    status: str
    storage: str
    active_edit_sessions: int = 0


def create_health_router() -> APIRouter:
    """Create the health router.

    Routes:
        GET /health/ - Liveness check
        GET /health/ready - Readiness check with storage verification
    """
    router = APIRouter(prefix="/health", tags=["health"])

    @router.get("/", response_model=HealthResponse)
    async def health() -> dict[str, Any]:
        return {"status": "ok"}

    @router.get("/ready", response_model=ReadinessResponse)
    async def readiness(
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
    ) -> dict[str, Any]:
        sessions = len(engine.edit_guard.active_sessions())
        try:
            await engine.storage.query_records(RecordFilter(), limit=1)
        except StorageError as exc:
            logger.warning("readiness_check_failed", storage="disconnected", error=str(exc))
            return {"status": "unhealthy", "storage": "disconnected", "active_edit_sessions": sessions}

        logger.debug("readiness_check_passed", storage="connected")
        return {"status": "ok", "storage": "connected", "active_edit_sessions": sessions}

    return router
