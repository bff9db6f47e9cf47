"""Product record and transition endpoints.

Routes:
    POST /records/ - Create a record in DRAFT
    GET /records/ - List records with state/reviewer filters
    GET /records/{record_id} - Fetch one record
    POST /records/{record_id}/transitions - Request a transition
    POST /records/{record_id}/transitions/validate - Validate without executing
    GET /records/{record_id}/next-states - Legal next states for the caller
    GET /records/{record_id}/previous-states - Legal previous states for the caller
    GET /records/{record_id}/progress - Workflow progress
    GET /records/{record_id}/consistency - State/history consistency check
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from productflow.domain import Identity, LifecycleState, ProductRecord
from productflow.engine import WorkflowEngine
from productflow.reviewers import AssignmentRequest
from productflow.storage import RecordFilter
from productflow.web.dependencies import (
    get_identity,
    get_workflow_engine,
    unwrap,
    unwrap_transition,
)
from productflow.workflow import (
    TransitionRequest,
    TransitionResult,
    ValidationOutcome,
    WorkflowProgress,
)

logger = structlog.get_logger(__name__)


# --- Pydantic Schemas ---


class RecordCreate(BaseModel):
    """Request schema for creating a record."""

    id: str = Field(..., min_length=1, max_length=255)
    name: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)


class TransitionBody(BaseModel):
    """Request schema for a transition; the record id comes from the path."""

    to_state: LifecycleState
    from_state: LifecycleState | None = None
    reason: str | None = None
    comment: str | None = None
    assigned_reviewer_id: str | None = None
    auto_assign: AssignmentRequest | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_request(self, record_id: str, identity: Identity | None) -> TransitionRequest:
        return TransitionRequest(
            record_id=record_id,
            identity=identity,
            **self.model_dump(),
        )


def create_records_router() -> APIRouter:
    """Create the records router."""
    router = APIRouter(prefix="/records", tags=["records"])

    @router.post("/", response_model=ProductRecord, status_code=201)
    async def create_record(
        body: RecordCreate,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> ProductRecord:
        record = ProductRecord(id=body.id, name=body.name, attributes=body.attributes)
        return unwrap(await engine.create_record(record, identity))

    @router.get("/", response_model=list[ProductRecord])
    async def list_records(
        state: list[LifecycleState] | None = Query(default=None),  # noqa: B008
        assigned_reviewer_id: str | None = None,
        limit: int = Query(default=100, ge=1, le=1000),
        offset: int = Query(default=0, ge=0),
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> list[ProductRecord]:
        record_filter = RecordFilter(states=state, assigned_reviewer_id=assigned_reviewer_id)
        records = unwrap(
            await engine.list_records(record_filter, identity, limit=limit, offset=offset)
        )
        logger.info("records_listed", count=len(records))
        return records

    @router.get("/{record_id}", response_model=ProductRecord)
    async def get_record(
        record_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> ProductRecord:
        return unwrap(await engine.get_record(record_id, identity))

    @router.post("/{record_id}/transitions", response_model=TransitionResult)
    async def request_transition(
        record_id: str,
        body: TransitionBody,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> TransitionResult:
        result = await engine.request_transition(body.to_request(record_id, identity))
        return unwrap_transition(result)

    @router.post("/{record_id}/transitions/validate", response_model=ValidationOutcome)
    async def validate_transition(
        record_id: str,
        body: TransitionBody,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> ValidationOutcome:
        return await engine.validate_transition(body.to_request(record_id, identity))

    @router.get("/{record_id}/next-states", response_model=list[LifecycleState])
    async def next_states(
        record_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> list[LifecycleState]:
        return unwrap(await engine.get_valid_next_states(record_id, identity))

    @router.get("/{record_id}/previous-states", response_model=list[LifecycleState])
    async def previous_states(
        record_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> list[LifecycleState]:
        return unwrap(await engine.get_valid_previous_states(record_id, identity))

    @router.get("/{record_id}/progress", response_model=WorkflowProgress)
    async def progress(
        record_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> WorkflowProgress:
        return unwrap(await engine.get_workflow_progress(record_id, identity))

    @router.get("/{record_id}/consistency", response_model=ValidationOutcome)
    async def consistency(
        record_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> ValidationOutcome:
        return unwrap(await engine.validate_record_state(record_id, identity))

    return router
