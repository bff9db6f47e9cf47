"""Domain models for Productflow.

Pydantic models for records, audit entries, reviewer profiles, identities
and the enums shared by every engine component.
"""

from productflow.domain.audit import AuditEntry, FieldChange, compute_priority
from productflow.domain.enums import (
    INITIAL_STATE,
    AuditPriority,
    LifecycleState,
    ReviewerAvailability,
    Role,
    WorkflowAction,
)
from productflow.domain.records import (
    Identity,
    ProductRecord,
    StateHistoryEntry,
    as_utc,
    utc_now,
)
from productflow.domain.reviewers import (
    AvailabilityWindow,
    ReviewerProfile,
    ReviewerSummary,
    TemporaryDelegation,
)

__all__ = [
    "AuditEntry",
    "AuditPriority",
    "AvailabilityWindow",
    "FieldChange",
    "INITIAL_STATE",
    "Identity",
    "LifecycleState",
    "ProductRecord",
    "ReviewerAvailability",
    "ReviewerProfile",
    "ReviewerSummary",
    "Role",
    "StateHistoryEntry",
    "TemporaryDelegation",
    "WorkflowAction",
    "as_utc",
    "compute_priority",
    "utc_now",
]
