"""Storage collaborator contract.

The engine never owns persistence. It talks to a ``StorageCollaborator``
through this narrow async interface; implementations raise ``StorageError``
on failure and must make ``save_record`` atomic with respect to
concurrent reads of the same record. ``save_transition`` persists a record
and the audit entry describing its change as one unit.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, field_validator

from productflow.domain import (
    AuditEntry,
    AuditPriority,
    LifecycleState,
    ProductRecord,
    as_utc,
)


class RecordFilter(BaseModel):
    """Criteria for selecting product records.

    Attributes:
        record_ids: Explicit ids; result keeps this order.
        states: Lifecycle states to include.
        assigned_reviewer_id: Only records assigned to this reviewer.
        updated_after: Inclusive lower bound on ``updated_at``.
        updated_before: Exclusive upper bound on ``updated_at``.
    """

    record_ids: list[str] | None = None
    states: list[LifecycleState] | None = None
    assigned_reviewer_id: str | None = None
    updated_after: datetime | None = None
    updated_before: datetime | None = None

    @field_validator("updated_after", "updated_before")
    @classmethod
    def _bounds_in_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    def matches(self, record: ProductRecord) -> bool:
        if self.record_ids is not None and record.id not in self.record_ids:
            return False
        if self.states is not None and record.lifecycle_state not in self.states:
            return False
        if (
            self.assigned_reviewer_id is not None
            and record.assigned_reviewer_id != self.assigned_reviewer_id
        ):
            return False
        if self.updated_after is not None and record.updated_at < self.updated_after:
            return False
        if self.updated_before is not None and record.updated_at >= self.updated_before:
            return False
        return True


class AuditFilter(BaseModel):
    """Structured and free-text criteria for audit entries.

    Attributes:
        search: Case-insensitive text matched against action, actor, record,
            reason, comment and field names.
        actor_id: Only entries by this actor.
        actor_role: Only entries made under this role.
        actions: Only these actions.
        record_id: Only entries for this record.
        priority: Only entries with this priority.
        resulting_state: Only entries that left the record in this state.
        start_date: Inclusive lower bound on ``timestamp``.
        end_date: Exclusive upper bound on ``timestamp``.
    """

    search: str | None = None
    actor_id: str | None = None
    actor_role: str | None = None
    actions: list[str] | None = None
    record_id: str | None = None
    priority: AuditPriority | None = None
    resulting_state: LifecycleState | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _bounds_in_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    def matches(self, entry: AuditEntry) -> bool:
        if self.actor_id is not None and entry.actor_id != self.actor_id:
            return False
        if self.actor_role is not None and entry.actor_role != self.actor_role:
            return False
        if self.actions is not None and entry.action not in self.actions:
            return False
        if self.record_id is not None and entry.record_id != self.record_id:
            return False
        if self.priority is not None and entry.priority != self.priority:
            return False
        if self.resulting_state is not None and entry.resulting_state != self.resulting_state:
            return False
        if self.start_date is not None and entry.timestamp < self.start_date:
            return False
        if self.end_date is not None and entry.timestamp >= self.end_date:
            return False
        if self.search:
            needle = self.search.lower()
            haystack = [
                entry.action,
                entry.actor_id,
                entry.record_id,
                entry.reason or "",
                entry.comment or "",
                *(change.field for change in entry.field_changes),
            ]
            if not any(needle in value.lower() for value in haystack):
                return False
        return True


@runtime_checkable
class StorageCollaborator(Protocol):
    """Persistence contract the engine depends on."""

    async def get_record(self, record_id: str) -> ProductRecord | None:
        """Return the record or None when it does not exist."""
        ...

    async def save_record(self, record: ProductRecord) -> None:
        """Insert or replace a record atomically."""
        ...

    async def append_audit_entry(self, entry: AuditEntry) -> None:
        """Append one audit entry; entries are never updated."""
        ...

    async def save_transition(self, record: ProductRecord, entry: AuditEntry) -> None:
        """Persist a record and its audit entry as one atomic unit."""
        ...

    async def query_records(
        self,
        record_filter: RecordFilter,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ProductRecord]:
        """Return matching records, ordered by explicit ids or by id."""
        ...

    async def query_audit_entries(
        self,
        audit_filter: AuditFilter,
        descending: bool = True,
    ) -> list[AuditEntry]:
        """Return every matching entry ordered by timestamp then id."""
        ...

    async def get_audit_entry(self, entry_id: str) -> AuditEntry | None:
        """Return one entry by id."""
        ...
