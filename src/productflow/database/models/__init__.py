"""SQLAlchemy ORM models for Productflow.

Defines the product_records and audit_entries tables used by the SQL
storage collaborator. All models use SQLAlchemy 2.0 declarative style
with Mapped[] type annotations.
"""

from productflow.database.models.audit_entry import AuditEntryRow
from productflow.database.models.base import Base, TimestampMixin
from productflow.database.models.product_record import ProductRecordRow

__all__ = [
    "AuditEntryRow",
    "Base",
    "ProductRecordRow",
    "TimestampMixin",
]
