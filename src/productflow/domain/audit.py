"""Audit entry models.

Audit entries are immutable once built: the model is frozen and carries a
SHA-256 integrity hash over its canonical content so that tampering in the
store can be detected by ``verify_integrity``.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from productflow.domain.enums import AuditPriority, LifecycleState

# Actions that always warrant attention when reviewing the ledger
CRITICAL_ACTIONS = frozenset({"unpublish", "record_deleted", "role_changed"})
HIGH_PRIORITY_ACTIONS = frozenset(
    {
        "submit",
        "approve",
        "reject",
        "publish",
        "reopen",
        "assign_reviewer",
        "reviewer_reassigned",
        "bulk_operation",
    }
)
SENSITIVE_FIELDS = frozenset({"lifecycle_state", "price", "cost", "inventory"})


def _value_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "string"


class FieldChange(BaseModel):
    """A single field change captured by an audit entry.

    Attributes:
        field: Name of the changed field.
        previous_value: Value before the change.
        new_value: Value after the change.
        value_type: JSON-ish type name of the value.
    """

    model_config = {"frozen": True}

    field: str
    previous_value: Any = None
    new_value: Any = None
    value_type: str = "string"

    @classmethod
    def between(cls, field: str, previous_value: Any, new_value: Any) -> "FieldChange":
        """Build a change, inferring ``value_type`` from the non-null side."""
        sample = new_value if new_value is not None else previous_value
        return cls(
            field=field,
            previous_value=previous_value,
            new_value=new_value,
            value_type=_value_type(sample),
        )


def compute_priority(
    action: str,
    field_changes: list[FieldChange],
    metadata: dict[str, Any] | None = None,
) -> AuditPriority:
    """Derive the priority of an audit entry.

    Critical actions win, then high-priority actions, then changes to
    sensitive fields or a ``risk_level`` of ``"high"`` in metadata.
    Everything else is medium.
    """
    if action in CRITICAL_ACTIONS:
        return AuditPriority.CRITICAL
    if action in HIGH_PRIORITY_ACTIONS:
        return AuditPriority.HIGH
    if any(change.field in SENSITIVE_FIELDS for change in field_changes):
        return AuditPriority.HIGH
    if metadata and metadata.get("risk_level") == "high":
        return AuditPriority.HIGH
    return AuditPriority.MEDIUM


class AuditEntry(BaseModel):
    """Immutable record of one action taken on a record.

    Attributes:
        id: Entry identifier.
        record_id: Record the action applied to.
        actor_id: Who performed the action.
        actor_role: Role the action was performed under.
        action: Action name (usually a ``WorkflowAction`` value).
        timestamp: When the action happened.
        field_changes: Changes applied by the action.
        reason: Optional reason.
        comment: Optional comment.
        resulting_state: Record state after the action.
        priority: Derived priority level.
        metadata: Free-form context (rule, automatic flag, campaign id, ...).
        integrity_hash: SHA-256 of the canonical content.
    """

    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    record_id: str
    actor_id: str
    actor_role: str
    action: str
    timestamp: datetime
    field_changes: list[FieldChange] = Field(default_factory=list)
    reason: str | None = None
    comment: str | None = None
    resulting_state: LifecycleState | None = None
    priority: AuditPriority = AuditPriority.MEDIUM
    metadata: dict[str, Any] = Field(default_factory=dict)
    integrity_hash: str | None = None

    @classmethod
    def create(
        cls,
        *,
        record_id: str,
        actor_id: str,
        actor_role: str,
        action: str,
        timestamp: datetime,
        field_changes: list[FieldChange] | None = None,
        reason: str | None = None,
        comment: str | None = None,
        resulting_state: LifecycleState | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "AuditEntry":
        """Build a sealed entry with priority and integrity hash filled in."""
        changes = list(field_changes or [])
        meta = dict(metadata or {})
        entry = cls(
            record_id=record_id,
            actor_id=actor_id,
            actor_role=actor_role,
            action=action,
            timestamp=timestamp,
            field_changes=changes,
            reason=reason,
            comment=comment,
            resulting_state=resulting_state,
            priority=compute_priority(action, changes, meta),
            metadata=meta,
        )
        return entry.model_copy(update={"integrity_hash": entry.compute_hash()})

    def compute_hash(self) -> str:
        """Hash every field except ``integrity_hash`` in a stable form."""
        payload = self.model_dump(mode="json", exclude={"integrity_hash"})
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def verify_integrity(self) -> bool:
        return self.integrity_hash is not None and self.integrity_hash == self.compute_hash()
