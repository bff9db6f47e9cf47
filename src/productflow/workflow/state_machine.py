"""Lifecycle state machine for Productflow.

This module holds the authoritative set of legal transitions between
lifecycle states and validates transition requests against it: rule
lookup, role check, permission gate, target-state preconditions and
configured conditions.

Validation aggregates every problem it finds after the structural rule
lookup, so a caller can show all of them at once.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog
from pydantic import BaseModel, Field

from productflow.config import WorkflowConfig
from productflow.domain import INITIAL_STATE, LifecycleState, ProductRecord, Role
from productflow.errors import ErrorCode, ErrorDetail
from productflow.workflow.models import TransitionRequest, ValidationOutcome
from productflow.workflow.permissions import PermissionGate
from productflow.workflow.rules import (
    ConditionRegistry,
    TransitionRule,
    default_rules,
    rules_from_config,
)

logger = structlog.get_logger(__name__)

# Forward path used for progress reporting
HAPPY_PATH: tuple[LifecycleState, ...] = (
    LifecycleState.DRAFT,
    LifecycleState.REVIEW,
    LifecycleState.APPROVED,
    LifecycleState.PUBLISHED,
)

REVIEWER_REQUIRED_MESSAGE = "Reviewer must be assigned when submitting for review"
REJECTION_REASON_MESSAGE = "Rejection reason is required when rejecting a product"


class ProgressStep(BaseModel):
    """One step of the forward workflow path.

    Attributes:
        state: State of this step.
        completed: The record has moved past this step.
        current: The record is at this step.
        entered_at: Most recent time the record entered this state.
    """

    state: LifecycleState
    completed: bool
    current: bool
    entered_at: str | None = None


class WorkflowProgress(BaseModel):
    """Where a record stands on the forward path.

    Attributes:
        current_state: The record's lifecycle state.
        percentage: Position on the path, 0 for DRAFT and 100 for PUBLISHED.
        rejected: The record is currently rejected.
        steps: One entry per forward-path state.
    """

    current_state: LifecycleState
    percentage: float
    rejected: bool = False
    steps: list[ProgressStep] = Field(default_factory=list)


class LifecycleStateMachine:
    """Validates lifecycle transitions against a rule table.

    The rule table is loaded once at construction. Lookups index it by
    ``(from_state, to_state)`` and by ``from_state``.

    Attributes:
        rules: The active transition rules.
        gate: Permission gate consulted for rule capabilities.
        superuser_roles: Roles that bypass role equality checks.
    """

    def __init__(
        self,
        rules: Iterable[TransitionRule] | None = None,
        gate: PermissionGate | None = None,
        superuser_roles: Iterable[str] = ("admin",),
    ) -> None:
        self.rules: list[TransitionRule] = list(rules) if rules is not None else default_rules()
        self.gate = gate or PermissionGate()
        self.superuser_roles = frozenset(superuser_roles)
        self._by_edge = {(r.from_state, r.to_state): r for r in self.rules}
        self._logger = logger.bind(component="LifecycleStateMachine")

    @classmethod
    def from_config(
        cls,
        config: WorkflowConfig,
        gate: PermissionGate | None = None,
        registry: ConditionRegistry | None = None,
    ) -> "LifecycleStateMachine":
        """Build a state machine from configuration.

        Raises:
            ValueError: If configured rules name unknown states, roles or
                conditions.
        """
        registry = registry or ConditionRegistry()
        if config.transitions is not None:
            rules = rules_from_config(config.transitions, registry)
        else:
            rules = default_rules(registry)
        return cls(rules=rules, gate=gate, superuser_roles=config.superuser_roles)

    # ------------------------------------------------------------------
    # Rule lookup
    # ------------------------------------------------------------------

    def find_rule(
        self, from_state: LifecycleState, to_state: LifecycleState
    ) -> TransitionRule | None:
        return self._by_edge.get((from_state, to_state))

    def is_superuser(self, role: Role | str) -> bool:
        return getattr(role, "value", role) in self.superuser_roles

    def _role_matches(self, rule: TransitionRule, role: Role) -> bool:
        return rule.required_role == role or self.is_superuser(role)

    def get_valid_next_states(
        self, state: LifecycleState, role: Role
    ) -> list[LifecycleState]:
        """States the role may request from ``state``, in rule table order."""
        return [
            r.to_state
            for r in self.rules
            if r.from_state == state and not r.is_automatic and self._role_matches(r, role)
        ]

    def get_valid_previous_states(
        self, state: LifecycleState, role: Role
    ) -> list[LifecycleState]:
        """States from which the role may move a record into ``state``."""
        return [
            r.from_state
            for r in self.rules
            if r.to_state == state and not r.is_automatic and self._role_matches(r, role)
        ]

    def get_automatic_rules(self, state: LifecycleState) -> list[TransitionRule]:
        return [r for r in self.rules if r.from_state == state and r.is_automatic]

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_transition(
        self,
        request: TransitionRequest,
        record: ProductRecord | None = None,
    ) -> ValidationOutcome:
        """Validate a transition request.

        A missing identity, an unknown source state or a missing rule are
        structural and short-circuit. Everything after the rule lookup is
        collected so all problems are reported together.

        Args:
            request: The transition request.
            record: Current record, used for the source state when the
                request does not name one and by condition predicates.

        Returns:
            ValidationOutcome with every error and warning found.
        """
        if request.identity is None:
            return ValidationOutcome(
                is_valid=False,
                errors=[ErrorDetail(code=ErrorCode.UNAUTHENTICATED, message="Actor identity is required")],
            )

        from_state = request.from_state
        if from_state is None and record is not None:
            from_state = record.lifecycle_state
        if from_state is None:
            return ValidationOutcome(
                is_valid=False,
                errors=[ErrorDetail(code=ErrorCode.VALIDATION_ERROR, message="Source state is required")],
            )

        rule = self.find_rule(from_state, request.to_state)
        if rule is None:
            return ValidationOutcome(
                is_valid=False,
                errors=[
                    ErrorDetail(
                        code=ErrorCode.INVALID_TRANSITION,
                        message=(
                            f"Transition from {from_state.value} to "
                            f"{request.to_state.value} is not allowed"
                        ),
                    )
                ],
            )

        errors: list[ErrorDetail] = []
        warnings: list[str] = []
        role = request.identity.actor_role

        if rule.required_role != role:
            if self.is_superuser(role):
                warnings.append(
                    f"Role check bypassed for superuser role {role.value}"
                )
            else:
                errors.append(
                    ErrorDetail(
                        code=ErrorCode.PERMISSION_DENIED,
                        message=(
                            f"Role {role.value} cannot transition from {from_state.value} "
                            f"to {request.to_state.value}; requires {rule.required_role.value}"
                        ),
                    )
                )

        if not errors and rule.required_permissions:
            decision = self.gate.check(
                role, None, {"required_permissions": rule.required_permissions}
            )
            if not decision.allowed:
                errors.append(
                    ErrorDetail(code=ErrorCode.PERMISSION_DENIED, message=decision.reason or "Permission denied")
                )

        errors.extend(self._check_preconditions(request))
        errors.extend(self._check_conditions(rule, request, record))

        if (
            request.to_state == LifecycleState.APPROVED
            and record is not None
            and record.submitted_by == request.identity.actor_id
        ):
            warnings.append("Reviewer is approving their own submission")

        if errors:
            self._logger.debug(
                "transition_validation_failed",
                record_id=request.record_id,
                from_state=from_state.value,
                to_state=request.to_state.value,
                errors=[e.message for e in errors],
            )
        return ValidationOutcome(is_valid=not errors, errors=errors, warnings=warnings)

    def _check_preconditions(self, request: TransitionRequest) -> list[ErrorDetail]:
        errors: list[ErrorDetail] = []
        if request.to_state == LifecycleState.REVIEW:
            if not (request.assigned_reviewer_id and request.assigned_reviewer_id.strip()):
                errors.append(
                    ErrorDetail(code=ErrorCode.MISSING_PRECONDITION, message=REVIEWER_REQUIRED_MESSAGE)
                )
        elif request.to_state == LifecycleState.REJECTED:
            if not (request.reason and request.reason.strip()):
                errors.append(
                    ErrorDetail(code=ErrorCode.MISSING_PRECONDITION, message=REJECTION_REASON_MESSAGE)
                )
        return errors

    def _check_conditions(
        self,
        rule: TransitionRule,
        request: TransitionRequest,
        record: ProductRecord | None,
    ) -> list[ErrorDetail]:
        errors: list[ErrorDetail] = []
        for condition in rule.conditions:
            try:
                satisfied = condition.predicate(request, record)
            except Exception as exc:
                self._logger.warning(
                    "transition_condition_raised",
                    condition=condition.name,
                    record_id=request.record_id,
                    error=str(exc),
                )
                errors.append(
                    ErrorDetail(
                        code=ErrorCode.VALIDATION_ERROR,
                        message=f"Condition {condition.name} failed: {exc}",
                    )
                )
                continue
            if not satisfied:
                errors.append(ErrorDetail(code=ErrorCode.VALIDATION_ERROR, message=condition.message))
        return errors

    # ------------------------------------------------------------------
    # Record inspection
    # ------------------------------------------------------------------

    def validate_record_state(self, record: ProductRecord) -> ValidationOutcome:
        """Check a stored record's state against its history and attribution."""
        errors: list[str] = []
        warnings: list[str] = []

        if record.state_history and not record.is_consistent():
            errors.append(
                f"Lifecycle state {record.lifecycle_state.value} does not match "
                f"last history entry {record.current_state.value}"
            )
        if not record.state_history and record.lifecycle_state != INITIAL_STATE:
            errors.append(
                f"Record without history must be in {INITIAL_STATE.value}"
            )

        state = record.lifecycle_state
        if state == LifecycleState.REVIEW:
            if not record.assigned_reviewer_id:
                warnings.append("Record in review should have an assigned reviewer")
            if not record.submitted_by:
                errors.append("Record in review must have a submitted by user")
            if not record.submitted_at:
                errors.append("Record in review must have a submission timestamp")
        elif state == LifecycleState.APPROVED:
            if not record.reviewed_by:
                errors.append("Record in approved state must have a reviewed by user")
            if not record.reviewed_at:
                errors.append("Record in approved state must have a review timestamp")
        elif state == LifecycleState.PUBLISHED:
            if not record.published_by:
                errors.append("Record in published state must have a published by user")
            if not record.published_at:
                errors.append("Record in published state must have a publication timestamp")
        elif state == LifecycleState.REJECTED and not record.rejection_reason:
            warnings.append("Rejected records should have a rejection reason")

        return ValidationOutcome(
            is_valid=not errors,
            errors=[ErrorDetail(code=ErrorCode.VALIDATION_ERROR, message=m) for m in errors],
            warnings=warnings,
        )

    def get_workflow_progress(self, record: ProductRecord) -> WorkflowProgress:
        state = record.lifecycle_state
        rejected = state == LifecycleState.REJECTED
        anchor = LifecycleState.REVIEW if rejected else state
        index = HAPPY_PATH.index(anchor) if anchor in HAPPY_PATH else 0

        entered: dict[LifecycleState, str] = {}
        for entry in record.state_history:
            entered[entry.state] = entry.timestamp.isoformat()

        steps = [
            ProgressStep(
                state=step,
                completed=i < index or (i == index and step == LifecycleState.PUBLISHED),
                current=i == index,
                entered_at=entered.get(step),
            )
            for i, step in enumerate(HAPPY_PATH)
        ]
        percentage = round(index / (len(HAPPY_PATH) - 1) * 100, 1)
        return WorkflowProgress(
            current_state=state, percentage=percentage, rejected=rejected, steps=steps
        )
