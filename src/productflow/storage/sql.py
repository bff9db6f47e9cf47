"""SQLAlchemy-backed storage collaborator.

Persists records and audit entries through an async session factory, so
the same implementation runs against PostgreSQL (asyncpg) in production
and SQLite (aiosqlite) in tests. ``save_transition`` writes the record
and its audit entry inside one transaction.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from productflow.database.models import AuditEntryRow, ProductRecordRow
from productflow.domain import (
    AuditEntry,
    FieldChange,
    ProductRecord,
    StateHistoryEntry,
    as_utc,
)
from productflow.errors import StorageError
from productflow.storage.base import AuditFilter, RecordFilter

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    return as_utc(value)


def _record_to_row(record: ProductRecord, row: ProductRecordRow) -> None:
    row.name = record.name
    row.lifecycle_state = record.lifecycle_state
    row.state_history = [h.model_dump(mode="json") for h in record.state_history]
    row.submitted_by = record.submitted_by
    row.submitted_at = record.submitted_at
    row.reviewed_by = record.reviewed_by
    row.reviewed_at = record.reviewed_at
    row.published_by = record.published_by
    row.published_at = record.published_at
    row.rejection_reason = record.rejection_reason
    row.assigned_reviewer_id = record.assigned_reviewer_id
    row.attributes = dict(record.attributes)
    row.created_at = record.created_at
    row.updated_at = record.updated_at


def _row_to_record(row: ProductRecordRow) -> ProductRecord:
    return ProductRecord(
        id=row.id,
        name=row.name,
        lifecycle_state=row.lifecycle_state,
        state_history=[StateHistoryEntry.model_validate(h) for h in row.state_history or []],
        submitted_by=row.submitted_by,
        submitted_at=_aware(row.submitted_at),
        reviewed_by=row.reviewed_by,
        reviewed_at=_aware(row.reviewed_at),
        published_by=row.published_by,
        published_at=_aware(row.published_at),
        rejection_reason=row.rejection_reason,
        assigned_reviewer_id=row.assigned_reviewer_id,
        attributes=dict(row.attributes or {}),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _entry_to_row(entry: AuditEntry) -> AuditEntryRow:
    return AuditEntryRow(
        id=entry.id,
        record_id=entry.record_id,
        actor_id=entry.actor_id,
        actor_role=entry.actor_role,
        action=entry.action,
        timestamp=entry.timestamp,
        field_changes=[c.model_dump(mode="json") for c in entry.field_changes],
        reason=entry.reason,
        comment=entry.comment,
        resulting_state=entry.resulting_state.value if entry.resulting_state else None,
        priority=entry.priority.value,
        metadata_=dict(entry.metadata),
        integrity_hash=entry.integrity_hash,
    )


def _row_to_entry(row: AuditEntryRow) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        record_id=row.record_id,
        actor_id=row.actor_id,
        actor_role=row.actor_role,
        action=row.action,
        timestamp=_aware(row.timestamp),
        field_changes=[FieldChange.model_validate(c) for c in row.field_changes or []],
        reason=row.reason,
        comment=row.comment,
        resulting_state=row.resulting_state,
        priority=row.priority,
        metadata=dict(row.metadata_ or {}),
        integrity_hash=row.integrity_hash,
    )


class SqlStorage:
    """``StorageCollaborator`` backed by SQLAlchemy async sessions.

    Every SQLAlchemy failure is re-raised as ``StorageError`` naming the
    operation, so the engine can surface it as a ``STORAGE_ERROR`` result.

    Attributes:
        session_factory: Callable returning a new AsyncSession.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory
        self._logger = logger.bind(component="SqlStorage")

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def get_record(self, record_id: str) -> ProductRecord | None:
        try:
            async with self.session_factory() as session:
                row = await session.get(ProductRecordRow, record_id)
                return _row_to_record(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise StorageError(str(exc), "get_record") from exc

    async def save_record(self, record: ProductRecord) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._upsert_record(session, record)
        except SQLAlchemyError as exc:
            raise StorageError(str(exc), "save_record") from exc

    async def query_records(
        self,
        record_filter: RecordFilter,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ProductRecord]:
        stmt = select(ProductRecordRow)
        if record_filter.record_ids is not None:
            stmt = stmt.where(ProductRecordRow.id.in_(record_filter.record_ids))
        if record_filter.states is not None:
            stmt = stmt.where(ProductRecordRow.lifecycle_state.in_(record_filter.states))
        if record_filter.assigned_reviewer_id is not None:
            stmt = stmt.where(
                ProductRecordRow.assigned_reviewer_id == record_filter.assigned_reviewer_id
            )
        if record_filter.updated_after is not None:
            stmt = stmt.where(ProductRecordRow.updated_at >= record_filter.updated_after)
        if record_filter.updated_before is not None:
            stmt = stmt.where(ProductRecordRow.updated_at < record_filter.updated_before)

        explicit = record_filter.record_ids is not None
        if not explicit:
            stmt = stmt.order_by(ProductRecordRow.id).offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)

        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                rows = list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StorageError(str(exc), "query_records") from exc

        records = [_row_to_record(row) for row in rows]
        if explicit:
            # Keep the caller's id order, then page in memory
            by_id = {r.id: r for r in records}
            ordered = [by_id[rid] for rid in dict.fromkeys(record_filter.record_ids or []) if rid in by_id]
            end = None if limit is None else offset + limit
            records = ordered[offset:end]
        return records

    # ------------------------------------------------------------------
    # Audit entries
    # ------------------------------------------------------------------

    async def append_audit_entry(self, entry: AuditEntry) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(_entry_to_row(entry))
        except SQLAlchemyError as exc:
            raise StorageError(str(exc), "append_audit_entry") from exc

    async def save_transition(self, record: ProductRecord, entry: AuditEntry) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._upsert_record(session, record)
                    session.add(_entry_to_row(entry))
        except SQLAlchemyError as exc:
            self._logger.error(
                "transition_persist_failed",
                record_id=record.id,
                entry_id=entry.id,
                error=str(exc),
            )
            raise StorageError(str(exc), "save_transition") from exc

    async def query_audit_entries(
        self,
        audit_filter: AuditFilter,
        descending: bool = True,
    ) -> list[AuditEntry]:
        stmt = select(AuditEntryRow)
        conditions: list[Any] = []
        if audit_filter.actor_id is not None:
            conditions.append(AuditEntryRow.actor_id == audit_filter.actor_id)
        if audit_filter.actor_role is not None:
            conditions.append(AuditEntryRow.actor_role == audit_filter.actor_role)
        if audit_filter.actions is not None:
            conditions.append(AuditEntryRow.action.in_(audit_filter.actions))
        if audit_filter.record_id is not None:
            conditions.append(AuditEntryRow.record_id == audit_filter.record_id)
        if audit_filter.priority is not None:
            conditions.append(AuditEntryRow.priority == audit_filter.priority.value)
        if audit_filter.resulting_state is not None:
            conditions.append(
                AuditEntryRow.resulting_state == audit_filter.resulting_state.value
            )
        if audit_filter.start_date is not None:
            conditions.append(AuditEntryRow.timestamp >= audit_filter.start_date)
        if audit_filter.end_date is not None:
            conditions.append(AuditEntryRow.timestamp < audit_filter.end_date)
        if conditions:
            stmt = stmt.where(*conditions)

        if descending:
            stmt = stmt.order_by(AuditEntryRow.timestamp.desc(), AuditEntryRow.id.desc())
        else:
            stmt = stmt.order_by(AuditEntryRow.timestamp.asc(), AuditEntryRow.id.asc())

        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                rows = list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StorageError(str(exc), "query_audit_entries") from exc

        entries = [_row_to_entry(row) for row in rows]
        if audit_filter.search:
            # Free-text search also covers field names inside the JSON column
            entries = [e for e in entries if audit_filter.matches(e)]
        return entries

    async def get_audit_entry(self, entry_id: str) -> AuditEntry | None:
        try:
            async with self.session_factory() as session:
                row = await session.get(AuditEntryRow, entry_id)
                return _row_to_entry(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise StorageError(str(exc), "get_audit_entry") from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _upsert_record(self, session: AsyncSession, record: ProductRecord) -> None:
        row = await session.get(ProductRecordRow, record.id)
        if row is None:
            row = ProductRecordRow(id=record.id)
            session.add(row)
        _record_to_row(record, row)
