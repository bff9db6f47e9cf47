"""Audit entry model for Productflow.

Rows are insert-only. The storage layer never issues UPDATE or DELETE
against this table; retention and purge are administrative concerns
handled outside the engine.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from productflow.database.models.base import Base


class AuditEntryRow(Base):
    """An immutable audit entry row.

    Attributes:
        id: UUID string generated by the engine.
        record_id: Record the action applied to.
        actor_id: Who performed the action.
        actor_role: Role the action was performed under.
        action: Action name.
        timestamp: When the action happened.
        field_changes: JSON list of field changes.
        reason: Optional reason.
        comment: Optional comment.
        resulting_state: Record state after the action.
        priority: Derived priority level.
        metadata_: JSON metadata (column ``metadata``).
        integrity_hash: SHA-256 of the canonical entry content.
    """

    __tablename__ = "audit_entries"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    record_id: Mapped[str] = mapped_column(Text, nullable=False)
    actor_id: Mapped[str] = mapped_column(Text, nullable=False)
    actor_role: Mapped[str] = mapped_column(Text, nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    field_changes: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, default=list, nullable=False
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    resulting_state: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict, nullable=False
    )
    integrity_hash: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_audit_entries_record_id", "record_id"),
        Index("ix_audit_entries_actor_id", "actor_id"),
        Index("ix_audit_entries_action", "action"),
        Index("ix_audit_entries_timestamp", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AuditEntryRow(id={self.id}, action={self.action})>"
