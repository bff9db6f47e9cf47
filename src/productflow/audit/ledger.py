"""Audit ledger for Productflow.

Read side of the append-only audit trail: filtered and paginated
queries, per-record history, aggregation, export and integrity checks.
Entries are appended by the transition executor through the storage
collaborator and are never edited or removed here.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime

import structlog
from pydantic import BaseModel, Field

from productflow.audit.export import (
    AuditExport,
    ExportFormat,
    IntegrityReport,
    render_export,
    verify_entries,
)
from productflow.audit.pagination import AuditPage, AuditQuery, InvalidPageRequest, paginate
from productflow.config import AuditConfig
from productflow.domain import AuditEntry, Identity, WorkflowAction
from productflow.errors import ErrorCode, OperationResult, StorageError
from productflow.storage.base import AuditFilter, StorageCollaborator
from productflow.workflow.permissions import PermissionGate

logger = structlog.get_logger(__name__)


class AuditStats(BaseModel):
    """Aggregated counts over a filtered set of entries.

    Attributes:
        total: Number of entries.
        by_action: Count per action.
        by_actor: Count per actor id.
        by_priority: Count per priority.
        by_day: Count per UTC day (``YYYY-MM-DD``).
        first_timestamp: Oldest entry timestamp.
        last_timestamp: Newest entry timestamp.
    """

    total: int = 0
    by_action: dict[str, int] = Field(default_factory=dict)
    by_actor: dict[str, int] = Field(default_factory=dict)
    by_priority: dict[str, int] = Field(default_factory=dict)
    by_day: dict[str, int] = Field(default_factory=dict)
    first_timestamp: datetime | None = None
    last_timestamp: datetime | None = None


class AuditLedger:
    """Queries, aggregates and exports audit entries.

    Attributes:
        storage: Storage collaborator holding the entries.
        config: Page size defaults and limits.
        gate: Permission gate for read and export access.
    """

    def __init__(
        self,
        storage: StorageCollaborator,
        config: AuditConfig | None = None,
        gate: PermissionGate | None = None,
    ) -> None:
        self.storage = storage
        self.config = config or AuditConfig()
        self.gate = gate or PermissionGate()
        self._logger = logger.bind(component="AuditLedger")

    async def append(self, entry: AuditEntry) -> OperationResult[AuditEntry]:
        """Append a standalone entry (actions other than transitions)."""
        try:
            await self.storage.append_audit_entry(entry)
        except StorageError as exc:
            return OperationResult.fail(ErrorCode.STORAGE_ERROR, str(exc))
        self._logger.info(
            "audit_entry_appended",
            entry_id=entry.id,
            record_id=entry.record_id,
            action=entry.action,
        )
        return OperationResult.ok(entry)

    async def get(self, entry_id: str, identity: Identity | None) -> OperationResult[AuditEntry]:
        denied = self._authorize(identity, WorkflowAction.VIEW_AUDIT_TRAIL)
        if denied is not None:
            return denied
        try:
            entry = await self.storage.get_audit_entry(entry_id)
        except StorageError as exc:
            return OperationResult.fail(ErrorCode.STORAGE_ERROR, str(exc))
        if entry is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, f"Audit entry {entry_id} not found")
        return OperationResult.ok(entry)

    async def query(
        self, query: AuditQuery, identity: Identity | None
    ) -> OperationResult[AuditPage]:
        """Run a filtered query and return one page."""
        denied = self._authorize(identity, WorkflowAction.VIEW_AUDIT_TRAIL)
        if denied is not None:
            return denied

        page_size = query.page_size or self.config.default_page_size
        if page_size > self.config.max_page_size:
            return OperationResult.fail(
                ErrorCode.VALIDATION_ERROR,
                f"Page size {page_size} exceeds maximum of {self.config.max_page_size}",
            )

        try:
            entries = await self.storage.query_audit_entries(
                query.filter, descending=query.descending
            )
        except StorageError as exc:
            return OperationResult.fail(ErrorCode.STORAGE_ERROR, str(exc))

        try:
            page = paginate(entries, query, page_size)
        except InvalidPageRequest as exc:
            return OperationResult.fail(ErrorCode.VALIDATION_ERROR, str(exc))

        self._logger.debug(
            "audit_query",
            strategy=query.strategy.value,
            total=page.page_info.total,
            returned=len(page.entries),
        )
        return OperationResult.ok(page)

    async def record_history(
        self, record_id: str, identity: Identity | None
    ) -> OperationResult[list[AuditEntry]]:
        """Every entry for one record, oldest first."""
        denied = self._authorize(identity, WorkflowAction.VIEW_AUDIT_TRAIL)
        if denied is not None:
            return denied
        try:
            entries = await self.storage.query_audit_entries(
                AuditFilter(record_id=record_id), descending=False
            )
        except StorageError as exc:
            return OperationResult.fail(ErrorCode.STORAGE_ERROR, str(exc))
        return OperationResult.ok(entries)

    async def aggregate(
        self, audit_filter: AuditFilter, identity: Identity | None
    ) -> OperationResult[AuditStats]:
        """Counts by action, actor, priority and day."""
        denied = self._authorize(identity, WorkflowAction.VIEW_AUDIT_TRAIL)
        if denied is not None:
            return denied
        try:
            entries = await self.storage.query_audit_entries(audit_filter, descending=False)
        except StorageError as exc:
            return OperationResult.fail(ErrorCode.STORAGE_ERROR, str(exc))

        stats = AuditStats(
            total=len(entries),
            by_action=dict(Counter(e.action for e in entries)),
            by_actor=dict(Counter(e.actor_id for e in entries)),
            by_priority=dict(Counter(e.priority.value for e in entries)),
            by_day=dict(Counter(e.timestamp.date().isoformat() for e in entries)),
            first_timestamp=entries[0].timestamp if entries else None,
            last_timestamp=entries[-1].timestamp if entries else None,
        )
        return OperationResult.ok(stats)

    async def export(
        self,
        audit_filter: AuditFilter,
        fmt: ExportFormat,
        identity: Identity | None,
    ) -> OperationResult[AuditExport]:
        """Export every matching entry, newest first."""
        denied = self._authorize(identity, WorkflowAction.EXPORT_AUDIT_TRAIL)
        if denied is not None:
            return denied
        try:
            entries = await self.storage.query_audit_entries(audit_filter)
        except StorageError as exc:
            return OperationResult.fail(ErrorCode.STORAGE_ERROR, str(exc))

        export = render_export(entries, fmt)
        self._logger.info(
            "audit_exported",
            format=fmt.value,
            count=export.count,
            actor_id=identity.actor_id if identity else None,
        )
        return OperationResult.ok(export)

    async def verify(
        self, audit_filter: AuditFilter, identity: Identity | None
    ) -> OperationResult[IntegrityReport]:
        """Recompute hashes for every matching entry."""
        denied = self._authorize(identity, WorkflowAction.VIEW_AUDIT_TRAIL)
        if denied is not None:
            return denied
        try:
            entries = await self.storage.query_audit_entries(audit_filter)
        except StorageError as exc:
            return OperationResult.fail(ErrorCode.STORAGE_ERROR, str(exc))

        report = verify_entries(entries)
        if report.invalid_ids:
            self._logger.warning(
                "audit_integrity_violation",
                invalid_count=len(report.invalid_ids),
                invalid_ids=report.invalid_ids[:20],
            )
        return OperationResult.ok(report)

    def _authorize(
        self, identity: Identity | None, action: WorkflowAction
    ) -> OperationResult | None:
        if identity is None:
            return OperationResult.fail(ErrorCode.UNAUTHENTICATED, "Actor identity is required")
        decision = self.gate.check(identity.actor_role, action)
        if not decision.allowed:
            return OperationResult.fail(
                ErrorCode.PERMISSION_DENIED, decision.reason or "Permission denied"
            )
        return None
