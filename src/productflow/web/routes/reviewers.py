"""Reviewer directory and assignment endpoints.

Routes:
    GET /reviewers/ - Summaries of every reviewer
    POST /reviewers/ - Register or replace a reviewer profile
    GET /reviewers/{user_id} - Reviewer summary
    GET /reviewers/{user_id}/availability - Effective availability
    PUT /reviewers/{user_id}/availability - Set or schedule availability
    PUT /reviewers/{user_id}/capacity - Set max assignments
    PUT /reviewers/{user_id}/backup - Set or clear the backup reviewer
    PUT /reviewers/{user_id}/delegation - Set a temporary delegation
    DELETE /reviewers/{user_id}/delegation - Clear the temporary delegation
    POST /reviewers/{user_id}/ratings - Add a rating
    POST /reviewers/{user_id}/reassign - Move in-review records to another reviewer
    POST /reviewers/{user_id}/delegate-absence - Hand work to delegate or backup
    POST /reviewers/assignments - Pick a reviewer under a policy
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from productflow.domain import (
    Identity,
    ReviewerAvailability,
    ReviewerProfile,
    ReviewerSummary,
    TemporaryDelegation,
)
from productflow.engine import WorkflowEngine
from productflow.reviewers import AssignmentRequest, AssignmentResult, ReassignmentReport
from productflow.web.dependencies import get_identity, get_workflow_engine, unwrap


# --- Pydantic Schemas ---


class AvailabilityUpdate(BaseModel):
    """Request schema for availability; a window schedules it instead."""

    availability: ReviewerAvailability
    start_at: datetime | None = None
    end_at: datetime | None = None
    note: str | None = None


class AvailabilityResponse(BaseModel):
    user_id: str
    availability: ReviewerAvailability


class CapacityUpdate(BaseModel):
    max_assignments: int = Field(..., ge=1)


class BackupUpdate(BaseModel):
    backup_reviewer_id: str | None = None


class RatingCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)


class RatingResponse(BaseModel):
    user_id: str
    rating: float


class ReassignBody(BaseModel):
    to_reviewer_id: str = Field(..., min_length=1)
    reason: str | None = None


def create_reviewers_router() -> APIRouter:
    """Create the reviewers router."""
    router = APIRouter(prefix="/reviewers", tags=["reviewers"])

    @router.get("/", response_model=list[ReviewerSummary])
    async def list_reviewers(
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> list[ReviewerSummary]:
        return unwrap(await engine.list_reviewers(identity))

    @router.post("/", response_model=ReviewerProfile, status_code=201)
    async def register_reviewer(
        profile: ReviewerProfile,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> ReviewerProfile:
        return unwrap(await engine.register_reviewer(profile, identity))

    @router.post("/assignments", response_model=AssignmentResult)
    async def request_assignment(
        request: AssignmentRequest,
        reserve: bool = Query(default=False),
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> AssignmentResult:
        return unwrap(await engine.request_assignment(request, identity, reserve=reserve))

    @router.get("/{user_id}", response_model=ReviewerSummary)
    async def get_reviewer(
        user_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> ReviewerSummary:
        return unwrap(await engine.get_reviewer_summary(user_id, identity))

    @router.get("/{user_id}/availability", response_model=AvailabilityResponse)
    async def get_availability(
        user_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> AvailabilityResponse:
        availability = unwrap(await engine.get_reviewer_availability(user_id, identity))
        return AvailabilityResponse(user_id=user_id, availability=availability)

    @router.put("/{user_id}/availability", response_model=ReviewerProfile)
    async def set_availability(
        user_id: str,
        body: AvailabilityUpdate,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> ReviewerProfile:
        return unwrap(
            await engine.set_reviewer_availability(
                user_id,
                body.availability,
                identity,
                start_at=body.start_at,
                end_at=body.end_at,
                note=body.note,
            )
        )

    @router.put("/{user_id}/capacity", response_model=ReviewerProfile)
    async def set_capacity(
        user_id: str,
        body: CapacityUpdate,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> ReviewerProfile:
        return unwrap(await engine.set_max_assignments(user_id, body.max_assignments, identity))

    @router.put("/{user_id}/backup", response_model=ReviewerProfile)
    async def set_backup(
        user_id: str,
        body: BackupUpdate,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> ReviewerProfile:
        return unwrap(
            await engine.set_backup_reviewer(user_id, body.backup_reviewer_id, identity)
        )

    @router.put("/{user_id}/delegation", response_model=ReviewerProfile)
    async def set_delegation(
        user_id: str,
        delegation: TemporaryDelegation,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> ReviewerProfile:
        return unwrap(await engine.set_temporary_delegation(user_id, delegation, identity))

    @router.delete("/{user_id}/delegation", response_model=ReviewerProfile)
    async def clear_delegation(
        user_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> ReviewerProfile:
        return unwrap(await engine.clear_delegation(user_id, identity))

    @router.post("/{user_id}/ratings", response_model=RatingResponse)
    async def rate(
        user_id: str,
        body: RatingCreate,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> RatingResponse:
        rating = unwrap(await engine.rate_reviewer(user_id, body.rating, identity))
        return RatingResponse(user_id=user_id, rating=rating)

    @router.post("/{user_id}/reassign", response_model=ReassignmentReport)
    async def reassign(
        user_id: str,
        body: ReassignBody,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> ReassignmentReport:
        return unwrap(
            await engine.reassign_reviews(user_id, body.to_reviewer_id, identity, body.reason)
        )

    @router.post("/{user_id}/delegate-absence", response_model=ReassignmentReport)
    async def delegate_absence(
        user_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> ReassignmentReport:
        return unwrap(await engine.delegate_during_absence(user_id, identity))

    return router
