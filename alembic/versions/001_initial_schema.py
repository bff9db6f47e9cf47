"""Initial schema for Productflow.

Creates the product_records and audit_entries tables and the
lifecycle_state enum.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LIFECYCLE_STATES = ("DRAFT", "REVIEW", "APPROVED", "PUBLISHED", "REJECTED")


def upgrade() -> None:
    lifecycle_state = sa.Enum(*LIFECYCLE_STATES, name="lifecycle_state")
    lifecycle_state.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "product_records",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column(
            "lifecycle_state",
            sa.Enum(*LIFECYCLE_STATES, name="lifecycle_state", create_type=False),
            nullable=False,
            server_default="DRAFT",
        ),
        sa.Column("state_history", sa.JSON(), nullable=False),
        sa.Column("submitted_by", sa.Text(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_by", sa.Text(), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("assigned_reviewer_id", sa.Text(), nullable=True),
        sa.Column("attributes", sa.JSON(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_product_records_lifecycle_state", "product_records", ["lifecycle_state"]
    )
    op.create_index(
        "ix_product_records_assigned_reviewer_id", "product_records", ["assigned_reviewer_id"]
    )

    # Insert-only; the storage layer never updates or deletes these rows
    op.create_table(
        "audit_entries",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("record_id", sa.Text(), nullable=False),
        sa.Column("actor_id", sa.Text(), nullable=False),
        sa.Column("actor_role", sa.Text(), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("field_changes", sa.JSON(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("resulting_state", sa.Text(), nullable=True),
        sa.Column("priority", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("integrity_hash", sa.Text(), nullable=True),
    )
    op.create_index("ix_audit_entries_record_id", "audit_entries", ["record_id"])
    op.create_index("ix_audit_entries_actor_id", "audit_entries", ["actor_id"])
    op.create_index("ix_audit_entries_action", "audit_entries", ["action"])
    op.create_index("ix_audit_entries_timestamp", "audit_entries", ["timestamp"])


def downgrade() -> None:
    op.drop_index("ix_audit_entries_timestamp", table_name="audit_entries")
    op.drop_index("ix_audit_entries_action", table_name="audit_entries")
    op.drop_index("ix_audit_entries_actor_id", table_name="audit_entries")
    op.drop_index("ix_audit_entries_record_id", table_name="audit_entries")
    op.drop_table("audit_entries")

    op.drop_index("ix_product_records_assigned_reviewer_id", table_name="product_records")
    op.drop_index("ix_product_records_lifecycle_state", table_name="product_records")
    op.drop_table("product_records")

    sa.Enum(name="lifecycle_state").drop(op.get_bind(), checkfirst=True)
