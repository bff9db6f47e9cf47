"""Role/capability permission gate.

Roles map to capability strings of the form ``resource:verb``; actions map
to the capabilities they require. A role holding ``resource:*`` has every
capability under that resource and ``*`` grants everything.

The gate is a pure lookup over two static tables. It holds no state and
has no side effects, so it is safe to share between components and to
call from any path, bulk or direct.

Example:
    >>> gate = PermissionGate()
    >>> gate.check(Role.EDITOR, WorkflowAction.SUBMIT).allowed
    True
    >>> gate.check(Role.VIEWER, WorkflowAction.PUBLISH).reason
    'Role viewer lacks workflow:publish'
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, Field

from productflow.domain import Role, WorkflowAction

ROLE_CAPABILITIES: dict[Role, frozenset[str]] = {
    Role.ADMIN: frozenset(
        {
            "*",
            "workflow:*",
            "products:*",
            "audit:*",
            "reviewers:*",
            "bulk:*",
        }
    ),
    Role.EDITOR: frozenset(
        {
            "products:create",
            "products:read",
            "products:write",
            "workflow:submit",
            "workflow:edit",
            "workflow:assign",
            "audit:read",
            "bulk:read",
            "reviewers:read",
        }
    ),
    Role.REVIEWER: frozenset(
        {
            "products:read",
            "workflow:approve",
            "workflow:reject",
            "workflow:review",
            "audit:read",
            "reviewers:read",
        }
    ),
    Role.VIEWER: frozenset(
        {
            "products:read",
            "audit:read",
        }
    ),
}

ACTION_CAPABILITIES: dict[WorkflowAction, tuple[str, ...]] = {
    WorkflowAction.SUBMIT: ("workflow:submit",),
    WorkflowAction.APPROVE: ("workflow:approve",),
    WorkflowAction.REJECT: ("workflow:reject",),
    WorkflowAction.PUBLISH: ("workflow:publish",),
    WorkflowAction.UNPUBLISH: ("workflow:unpublish",),
    WorkflowAction.REOPEN: ("workflow:reopen",),
    WorkflowAction.REVERT_TO_DRAFT: ("products:write",),
    WorkflowAction.EDIT: ("products:write",),
    WorkflowAction.ASSIGN_REVIEWER: ("workflow:assign",),
    WorkflowAction.REASSIGN_REVIEWER: ("workflow:assign", "reviewers:manage"),
    WorkflowAction.VIEW_PRODUCTS: ("products:read",),
    WorkflowAction.VIEW_AUDIT_TRAIL: ("audit:read",),
    WorkflowAction.EXPORT_AUDIT_TRAIL: ("audit:read", "audit:export"),
    WorkflowAction.BULK_OPERATIONS: ("workflow:bulk", "bulk:run"),
    WorkflowAction.VIEW_BULK_OPERATIONS: ("bulk:read",),
    WorkflowAction.CANCEL_BULK_OPERATIONS: ("workflow:bulk", "bulk:cancel"),
    WorkflowAction.VIEW_REVIEWERS: ("reviewers:read",),
    WorkflowAction.MANAGE_REVIEWERS: ("reviewers:manage",),
}


class PermissionDecision(BaseModel):
    """Outcome of a permission check.

    Attributes:
        allowed: Whether the role may perform the action.
        reason: Why the check failed, or None when allowed.
        missing: Capabilities the role lacks.
    """

    allowed: bool
    reason: str | None = None
    missing: list[str] = Field(default_factory=list)


def capability_granted(capabilities: Iterable[str], capability: str) -> bool:
    """Check one capability against a set that may contain wildcards."""
    granted = set(capabilities)
    if "*" in granted or capability in granted:
        return True
    resource = capability.split(":", 1)[0]
    return f"{resource}:*" in granted


class PermissionGate:
    """Answers "may role R perform action A" from static capability tables.

    Attributes:
        role_capabilities: Role to capability set table.
        action_capabilities: Action to required capabilities table.
    """

    def __init__(
        self,
        role_capabilities: Mapping[Role, Iterable[str]] | None = None,
        action_capabilities: Mapping[WorkflowAction, Iterable[str]] | None = None,
    ) -> None:
        source_roles = role_capabilities if role_capabilities is not None else ROLE_CAPABILITIES
        source_actions = (
            action_capabilities if action_capabilities is not None else ACTION_CAPABILITIES
        )
        self.role_capabilities = {role: frozenset(caps) for role, caps in source_roles.items()}
        self.action_capabilities = {
            action: tuple(caps) for action, caps in source_actions.items()
        }

    def capabilities_for(self, role: Role | str) -> frozenset[str]:
        try:
            return self.role_capabilities.get(Role(role), frozenset())
        except ValueError:
            return frozenset()

    def has_capability(self, role: Role | str, capability: str) -> bool:
        return capability_granted(self.capabilities_for(role), capability)

    def check(
        self,
        role: Role | str,
        action: WorkflowAction | str | None,
        context: Mapping[str, Any] | None = None,
    ) -> PermissionDecision:
        """Decide whether ``role`` may perform ``action``.

        Args:
            role: Role of the actor.
            action: Action being attempted. ``None`` checks only the
                capabilities named in the context.
            context: Optional extra inputs. ``required_permissions`` adds
                capabilities on top of those the action requires, which is
                how transition rules carry their own permission lists.

        Returns:
            PermissionDecision naming every missing capability.
        """
        required: list[str] = []
        if action is not None:
            try:
                required.extend(self.action_capabilities.get(WorkflowAction(action), ()))
            except ValueError:
                return PermissionDecision(
                    allowed=False, reason=f"Unknown action {action}"
                )
        if context:
            required.extend(context.get("required_permissions") or ())

        capabilities = self.capabilities_for(role)
        if not capabilities:
            return PermissionDecision(
                allowed=False,
                reason=f"Unknown role {getattr(role, 'value', role)}",
                missing=list(dict.fromkeys(required)),
            )

        missing = [
            cap for cap in dict.fromkeys(required) if not capability_granted(capabilities, cap)
        ]
        if missing:
            role_name = getattr(role, "value", role)
            return PermissionDecision(
                allowed=False,
                reason=f"Role {role_name} lacks {', '.join(missing)}",
                missing=missing,
            )
        return PermissionDecision(allowed=True)


def check_permission(
    role: Role | str,
    action: WorkflowAction | str | None,
    context: Mapping[str, Any] | None = None,
) -> PermissionDecision:
    """Check against the default tables without building a gate."""
    return _DEFAULT_GATE.check(role, action, context)


_DEFAULT_GATE = PermissionGate()
