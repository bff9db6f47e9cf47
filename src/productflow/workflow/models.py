"""Request and result models for the workflow engine."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from productflow.domain import AuditEntry, Identity, LifecycleState, ProductRecord
from productflow.errors import ErrorCode, ErrorDetail
from productflow.reviewers.selector import AssignmentRequest


class TransitionRequest(BaseModel):
    """A request to move one record to a new lifecycle state.

    Attributes:
        record_id: Record to transition.
        to_state: Target lifecycle state.
        identity: Acting identity; required by the executor.
        from_state: Expected current state. Defaults to the record's state;
            a mismatch is rejected.
        reason: Reason for the transition (required when rejecting).
        comment: Free-form comment.
        assigned_reviewer_id: Reviewer to assign when entering REVIEW.
        auto_assign: Ask the assignment selector for a reviewer when
            entering REVIEW without ``assigned_reviewer_id``.
        metadata: Extra context copied into the audit entry.
    """

    record_id: str = Field(..., min_length=1)
    to_state: LifecycleState
    identity: Identity | None = None
    from_state: LifecycleState | None = None
    reason: str | None = None
    comment: str | None = None
    assigned_reviewer_id: str | None = None
    auto_assign: AssignmentRequest | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ValidationOutcome(BaseModel):
    """Result of validating a transition request.

    Attributes:
        is_valid: True when no errors were found.
        errors: Every problem found, in check order.
        warnings: Non-blocking observations.
    """

    is_valid: bool
    errors: list[ErrorDetail] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def error_messages(self) -> list[str]:
        return [e.message for e in self.errors]


class TransitionResult(BaseModel):
    """Outcome of one executed transition, including automatic follow-ons.

    Attributes:
        success: Whether the requested transition was persisted.
        previous_state: State before the transition.
        new_state: State after the transition (before automatic follow-ons).
        record: Record after the transition and any automatic follow-ons.
        audit_entry: The single audit entry written for this transition.
        automatic_transitions: Results of chained automatic transitions.
        assignee_substituted_from: Original reviewer when delegation replaced
            the selected reviewer.
        error: All error messages joined with ``"; "``.
        code: Code of the first error.
        errors: Every problem found.
        warnings: Non-blocking observations.
    """

    success: bool
    previous_state: LifecycleState | None = None
    new_state: LifecycleState | None = None
    record: ProductRecord | None = None
    audit_entry: AuditEntry | None = None
    automatic_transitions: list["TransitionResult"] = Field(default_factory=list)
    assignee_substituted_from: str | None = None
    error: str | None = None
    code: ErrorCode | None = None
    errors: list[ErrorDetail] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def failure(
        cls,
        errors: list[ErrorDetail],
        previous_state: LifecycleState | None = None,
        warnings: list[str] | None = None,
    ) -> "TransitionResult":
        return cls(
            success=False,
            previous_state=previous_state,
            error="; ".join(e.message for e in errors),
            code=errors[0].code if errors else None,
            errors=list(errors),
            warnings=list(warnings or []),
        )


TransitionResult.model_rebuild()
