"""Database layer for Productflow: ORM models and connection helpers."""

from productflow.database.connection import get_engine, get_session_factory
from productflow.database.models import AuditEntryRow, Base, ProductRecordRow

__all__ = [
    "AuditEntryRow",
    "Base",
    "ProductRecordRow",
    "get_engine",
    "get_session_factory",
]
