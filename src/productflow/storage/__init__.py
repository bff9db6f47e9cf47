"""Storage collaborators for Productflow.

The engine depends only on the ``StorageCollaborator`` protocol; this
package ships an in-memory implementation and a SQLAlchemy one.
"""

from productflow.storage.base import AuditFilter, RecordFilter, StorageCollaborator
from productflow.storage.memory import InMemoryStorage
from productflow.storage.sql import SqlStorage

__all__ = [
    "AuditFilter",
    "InMemoryStorage",
    "RecordFilter",
    "SqlStorage",
    "StorageCollaborator",
]
