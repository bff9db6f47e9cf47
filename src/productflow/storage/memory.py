"""In-memory storage collaborator.

Suitable for tests, demos and single-process hosts. Records and entries
are deep-copied on the way in and out so callers never share mutable
state with the store, and a single ``asyncio.Lock`` serialises writes.
"""

from __future__ import annotations

import asyncio

import structlog

from productflow.domain import AuditEntry, ProductRecord
from productflow.errors import StorageError
from productflow.storage.base import AuditFilter, RecordFilter

logger = structlog.get_logger(__name__)


class InMemoryStorage:
    """Dictionary-backed ``StorageCollaborator``."""

    def __init__(self) -> None:
        self._records: dict[str, ProductRecord] = {}
        self._audit: list[AuditEntry] = []
        self._audit_ids: set[str] = set()
        self._lock = asyncio.Lock()
        self._logger = logger.bind(component="InMemoryStorage")

    async def get_record(self, record_id: str) -> ProductRecord | None:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record is not None else None

    async def save_record(self, record: ProductRecord) -> None:
        async with self._lock:
            self._records[record.id] = record.model_copy(deep=True)

    async def append_audit_entry(self, entry: AuditEntry) -> None:
        async with self._lock:
            self._append_unlocked(entry)

    async def save_transition(self, record: ProductRecord, entry: AuditEntry) -> None:
        async with self._lock:
            # Validate before mutating so a failure leaves both untouched
            if entry.id in self._audit_ids:
                raise StorageError(f"duplicate audit entry id {entry.id}", "save_transition")
            self._records[record.id] = record.model_copy(deep=True)
            self._append_unlocked(entry)

    async def query_records(
        self,
        record_filter: RecordFilter,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ProductRecord]:
        if record_filter.record_ids is not None:
            candidates = [
                self._records[rid]
                for rid in dict.fromkeys(record_filter.record_ids)
                if rid in self._records
            ]
        else:
            candidates = [self._records[rid] for rid in sorted(self._records)]

        matches = [r for r in candidates if record_filter.matches(r)]
        end = None if limit is None else offset + limit
        return [r.model_copy(deep=True) for r in matches[offset:end]]

    async def query_audit_entries(
        self,
        audit_filter: AuditFilter,
        descending: bool = True,
    ) -> list[AuditEntry]:
        matches = [e for e in self._audit if audit_filter.matches(e)]
        matches.sort(key=lambda e: (e.timestamp, e.id), reverse=descending)
        return matches

    async def get_audit_entry(self, entry_id: str) -> AuditEntry | None:
        for entry in self._audit:
            if entry.id == entry_id:
                return entry
        return None

    def _append_unlocked(self, entry: AuditEntry) -> None:
        if entry.id in self._audit_ids:
            raise StorageError(f"duplicate audit entry id {entry.id}", "append_audit_entry")
        self._audit.append(entry)
        self._audit_ids.add(entry.id)
        self._logger.debug("audit_entry_stored", entry_id=entry.id, record_id=entry.record_id)
