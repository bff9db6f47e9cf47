"""Enumerations shared across the Productflow engine."""

from __future__ import annotations

from enum import Enum


class LifecycleState(str, Enum):
    """Approval workflow states a product record moves through.

    A record with no state history is implicitly in ``DRAFT``.
    """

    DRAFT = "DRAFT"
    REVIEW = "REVIEW"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    REJECTED = "REJECTED"


INITIAL_STATE = LifecycleState.DRAFT


class Role(str, Enum):
    """Actor roles known to the permission gate."""

    ADMIN = "admin"
    EDITOR = "editor"
    REVIEWER = "reviewer"
    VIEWER = "viewer"


class WorkflowAction(str, Enum):
    """Actions checked by the permission gate and recorded in the audit ledger."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    PUBLISH = "publish"
    UNPUBLISH = "unpublish"
    REOPEN = "reopen"
    REVERT_TO_DRAFT = "revert_to_draft"
    EDIT = "edit"
    ASSIGN_REVIEWER = "assign_reviewer"
    REASSIGN_REVIEWER = "reassign_reviewer"
    VIEW_PRODUCTS = "view_products"
    VIEW_AUDIT_TRAIL = "view_audit_trail"
    EXPORT_AUDIT_TRAIL = "export_audit_trail"
    BULK_OPERATIONS = "bulk_operations"
    VIEW_BULK_OPERATIONS = "view_bulk_operations"
    CANCEL_BULK_OPERATIONS = "cancel_bulk_operations"
    VIEW_REVIEWERS = "view_reviewers"
    MANAGE_REVIEWERS = "manage_reviewers"


class AuditPriority(str, Enum):
    """Priority levels assigned to audit entries."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReviewerAvailability(str, Enum):
    """Reviewer availability states."""

    AVAILABLE = "AVAILABLE"
    BUSY = "BUSY"
    AWAY = "AWAY"
    VACATION = "VACATION"
