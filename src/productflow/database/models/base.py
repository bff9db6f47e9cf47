"""SQLAlchemy declarative base and common column mixins for Productflow.

This module defines the DeclarativeBase class and a TimestampMixin that
provides created_at and updated_at columns shared across all models.

Primary keys are host-supplied strings (records) or client-generated
UUID strings (audit entries), so the mixin does not define ``id``.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy 2.0 declarative base for all Productflow models."""

    pass


class TimestampMixin:
    """Mixin providing created_at and updated_at columns.

    Domain objects own these timestamps and the storage layer writes them
    as given; the defaults only apply to rows inserted without them.

    Attributes:
        created_at: Timestamp of row creation.
        updated_at: Timestamp of the last domain modification.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utc_now,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utc_now,
    )
