"""Audit ledger endpoints.

Routes:
    GET /audit/ - Offset-paginated query with common filters
    POST /audit/query - Full query (any pagination strategy)
    GET /audit/entries/{entry_id} - One entry
    GET /audit/records/{record_id} - A record's audit history, oldest first
    POST /audit/stats - Aggregate counts
    POST /audit/export - Export as json, ndjson or csv
    POST /audit/verify - Integrity check over matching entries
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from productflow.audit import (
    AuditPage,
    AuditQuery,
    AuditStats,
    ExportFormat,
    PaginationStrategy,
)
from productflow.domain import AuditEntry, AuditPriority, Identity
from productflow.engine import WorkflowEngine
from productflow.storage import AuditFilter
from productflow.web.dependencies import get_identity, get_workflow_engine, unwrap


class IntegrityResponse(BaseModel):
    """Integrity report with the derived ``all_valid`` flag."""

    checked: int
    valid: int
    all_valid: bool
    invalid_ids: list[str] = Field(default_factory=list)


def create_audit_router() -> APIRouter:
    """Create the audit router."""
    router = APIRouter(prefix="/audit", tags=["audit"])

    @router.get("/", response_model=AuditPage)
    async def list_entries(
        search: str | None = None,
        actor_id: str | None = None,
        record_id: str | None = None,
        action: list[str] | None = Query(default=None),  # noqa: B008
        priority: AuditPriority | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        page: int = Query(default=1, ge=1),
        page_size: int | None = Query(default=None, ge=1),
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> AuditPage:
        query = AuditQuery(
            filter=AuditFilter(
                search=search,
                actor_id=actor_id,
                record_id=record_id,
                actions=action,
                priority=priority,
                start_date=start_date,
                end_date=end_date,
            ),
            strategy=PaginationStrategy.OFFSET,
            page=page,
            page_size=page_size,
        )
        return unwrap(await engine.query_audit(query, identity))

    @router.post("/query", response_model=AuditPage)
    async def query_entries(
        query: AuditQuery,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> AuditPage:
        return unwrap(await engine.query_audit(query, identity))

    @router.get("/entries/{entry_id}", response_model=AuditEntry)
    async def get_entry(
        entry_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> AuditEntry:
        return unwrap(await engine.get_audit_entry(entry_id, identity))

    @router.get("/records/{record_id}", response_model=list[AuditEntry])
    async def record_history(
        record_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> list[AuditEntry]:
        return unwrap(await engine.get_record_history(record_id, identity))

    @router.post("/stats", response_model=AuditStats)
    async def stats(
        audit_filter: AuditFilter,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> AuditStats:
        return unwrap(await engine.audit_stats(audit_filter, identity))

    @router.post("/export")
    async def export(
        audit_filter: AuditFilter,
        format: ExportFormat = ExportFormat.JSON,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> Response:
        rendered = unwrap(await engine.export_audit(audit_filter, format, identity))
        return Response(
            content=rendered.content,
            media_type=rendered.content_type,
            headers={
                "Content-Disposition": f'attachment; filename="audit.{rendered.format.value}"',
                "X-Export-Count": str(rendered.count),
            },
        )

    @router.post("/verify", response_model=IntegrityResponse)
    async def verify(
        audit_filter: AuditFilter,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> IntegrityResponse:
        report = unwrap(await engine.verify_audit(audit_filter, identity))
        return IntegrityResponse(
            checked=report.checked,
            valid=report.valid,
            all_valid=report.all_valid,
            invalid_ids=report.invalid_ids,
        )

    return router
