"""Transition rule table and condition registry.

The rule table is a directed graph over lifecycle states, expressed as a
small list of tuples and turned into ``TransitionRule`` objects once, when
a state machine is built. Configuration may replace the table entirely;
rule conditions are referenced by name and resolved against a registry of
predicates.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from productflow.config import TransitionRuleConfig
from productflow.domain import LifecycleState, ProductRecord, Role, WorkflowAction

if TYPE_CHECKING:
    from productflow.workflow.models import TransitionRequest

ConditionPredicate = Callable[["TransitionRequest", "ProductRecord | None"], bool]

S = LifecycleState

# (from, to, required_role, required_permissions, is_automatic, conditions)
DEFAULT_TRANSITION_RULES: list[tuple[S, S, Role, tuple[str, ...], bool, tuple[str, ...]]] = [
    (S.DRAFT, S.REVIEW, Role.EDITOR, ("products:write", "workflow:submit"), False, ()),
    (S.REVIEW, S.APPROVED, Role.REVIEWER, ("workflow:approve",), False, ()),
    (S.REVIEW, S.REJECTED, Role.REVIEWER, ("workflow:reject",), False, ()),
    (S.APPROVED, S.PUBLISHED, Role.ADMIN, ("workflow:publish",), False, ()),
    (S.REJECTED, S.DRAFT, Role.EDITOR, ("products:write",), True, ()),
    (S.APPROVED, S.REVIEW, Role.ADMIN, ("workflow:reopen",), False, ()),
    (S.PUBLISHED, S.DRAFT, Role.ADMIN, ("workflow:unpublish",), False, ("reason_required",)),
]

# Audit action recorded for each edge
TRANSITION_ACTIONS: dict[tuple[S, S], WorkflowAction] = {
    (S.DRAFT, S.REVIEW): WorkflowAction.SUBMIT,
    (S.REVIEW, S.APPROVED): WorkflowAction.APPROVE,
    (S.REVIEW, S.REJECTED): WorkflowAction.REJECT,
    (S.APPROVED, S.PUBLISHED): WorkflowAction.PUBLISH,
    (S.REJECTED, S.DRAFT): WorkflowAction.REVERT_TO_DRAFT,
    (S.APPROVED, S.REVIEW): WorkflowAction.REOPEN,
    (S.PUBLISHED, S.DRAFT): WorkflowAction.UNPUBLISH,
}


def action_for(from_state: LifecycleState, to_state: LifecycleState) -> str:
    """Audit action name for an edge; unknown edges get a generic name."""
    action = TRANSITION_ACTIONS.get((from_state, to_state))
    return action.value if action is not None else "transition"


@dataclass(frozen=True)
class TransitionCondition:
    """A named predicate a rule must satisfy.

    Attributes:
        name: Registry name referenced by rules.
        predicate: Callable receiving the request and current record.
        message: Error text reported when the predicate returns False.
    """

    name: str
    predicate: ConditionPredicate
    message: str


@dataclass(frozen=True)
class TransitionRule:
    """One legal edge of the lifecycle graph.

    Attributes:
        from_state: Source state.
        to_state: Target state.
        required_role: Role allowed to request the transition.
        required_permissions: Capabilities checked by the permission gate.
        is_automatic: Fires without a request once ``from_state`` is reached.
        conditions: Extra predicates evaluated during validation.
    """

    from_state: LifecycleState
    to_state: LifecycleState
    required_role: Role
    required_permissions: tuple[str, ...] = ()
    is_automatic: bool = False
    conditions: tuple[TransitionCondition, ...] = field(default_factory=tuple)

    @property
    def action(self) -> str:
        return action_for(self.from_state, self.to_state)


def _has_text(value: str | None) -> bool:
    return bool(value and value.strip())


DEFAULT_CONDITIONS: dict[str, TransitionCondition] = {
    "reason_required": TransitionCondition(
        name="reason_required",
        predicate=lambda request, record: _has_text(request.reason),
        message="A reason is required for this transition",
    ),
    "comment_required": TransitionCondition(
        name="comment_required",
        predicate=lambda request, record: _has_text(request.comment),
        message="A comment is required for this transition",
    ),
    "reviewer_required": TransitionCondition(
        name="reviewer_required",
        predicate=lambda request, record: _has_text(request.assigned_reviewer_id)
        or (record is not None and _has_text(record.assigned_reviewer_id)),
        message="An assigned reviewer is required for this transition",
    ),
}


class ConditionRegistry:
    """Name to ``TransitionCondition`` lookup used when building rules."""

    def __init__(self, conditions: Iterable[TransitionCondition] | None = None) -> None:
        source = conditions if conditions is not None else DEFAULT_CONDITIONS.values()
        self._conditions = {c.name: c for c in source}

    def register(self, name: str, predicate: ConditionPredicate, message: str) -> None:
        self._conditions[name] = TransitionCondition(name, predicate, message)

    def resolve(self, name: str) -> TransitionCondition:
        try:
            return self._conditions[name]
        except KeyError:
            raise ValueError(f"Unknown transition condition: {name}") from None

    def names(self) -> list[str]:
        return sorted(self._conditions)


def build_rules(
    table: Iterable[tuple[S, S, Role, tuple[str, ...], bool, tuple[str, ...]]],
    registry: ConditionRegistry,
) -> list[TransitionRule]:
    """Turn a tuple table into rule objects, resolving condition names."""
    rules: list[TransitionRule] = []
    for from_state, to_state, role, permissions, automatic, condition_names in table:
        rules.append(
            TransitionRule(
                from_state=from_state,
                to_state=to_state,
                required_role=role,
                required_permissions=tuple(permissions),
                is_automatic=automatic,
                conditions=tuple(registry.resolve(n) for n in condition_names),
            )
        )
    return rules


def rules_from_config(
    entries: Iterable[TransitionRuleConfig],
    registry: ConditionRegistry,
) -> list[TransitionRule]:
    """Build rules from configuration entries.

    Raises:
        ValueError: If a state, role or condition name is unknown.
    """
    table = [
        (
            LifecycleState(entry.from_state.upper()),
            LifecycleState(entry.to_state.upper()),
            Role(entry.required_role.lower()),
            tuple(entry.required_permissions),
            entry.is_automatic,
            tuple(entry.conditions),
        )
        for entry in entries
    ]
    return build_rules(table, registry)


def default_rules(registry: ConditionRegistry | None = None) -> list[TransitionRule]:
    return build_rules(DEFAULT_TRANSITION_RULES, registry or ConditionRegistry())
