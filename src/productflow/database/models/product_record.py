"""Product record model for Productflow.

Stores the governed product record. The state history is kept as a JSON
array on the row so a record and its history are always written together
by a single UPDATE.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from productflow.database.models.base import Base, TimestampMixin
from productflow.domain.enums import LifecycleState


class ProductRecordRow(TimestampMixin, Base):
    """A product record row.

    Attributes:
        id: Host-supplied record identifier.
        name: Optional display name.
        lifecycle_state: Current lifecycle state.
        state_history: JSON list of state history entries.
        submitted_by / submitted_at: Submission attribution.
        reviewed_by / reviewed_at: Review attribution.
        published_by / published_at: Publication attribution.
        rejection_reason: Reason given on rejection.
        assigned_reviewer_id: Reviewer currently assigned.
        attributes: Opaque product fields.
    """

    __tablename__ = "product_records"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    lifecycle_state: Mapped[LifecycleState] = mapped_column(
        Enum(LifecycleState, name="lifecycle_state"),
        default=LifecycleState.DRAFT,
        nullable=False,
    )
    state_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, default=list, nullable=False
    )
    submitted_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reviewed_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    published_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_reviewer_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    attributes: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    __table_args__ = (
        Index("ix_product_records_lifecycle_state", "lifecycle_state"),
        Index("ix_product_records_assigned_reviewer_id", "assigned_reviewer_id"),
    )

    def __repr__(self) -> str:
        return f"<ProductRecordRow(id={self.id}, state={self.lifecycle_state})>"
