"""Lifecycle workflow: rules, state machine, executor, edit guard and bulk runner."""

from productflow.workflow.bulk import (
    CAMPAIGN_TRANSITIONS,
    BulkCampaign,
    BulkCampaignRunner,
    CampaignAction,
    CampaignItemResult,
    CampaignOptions,
    CampaignProgress,
    CampaignStatus,
    CampaignStore,
    InMemoryCampaignStore,
)
from productflow.workflow.edit_guard import EditAccess, EditGuard, EditSession
from productflow.workflow.executor import AUTOMATIC_REASON, TransitionExecutor
from productflow.workflow.models import TransitionRequest, TransitionResult, ValidationOutcome
from productflow.workflow.permissions import (
    ACTION_CAPABILITIES,
    ROLE_CAPABILITIES,
    PermissionDecision,
    PermissionGate,
    check_permission,
)
from productflow.workflow.rules import (
    DEFAULT_TRANSITION_RULES,
    ConditionRegistry,
    TransitionCondition,
    TransitionRule,
    action_for,
    default_rules,
)
from productflow.workflow.state_machine import (
    LifecycleStateMachine,
    ProgressStep,
    WorkflowProgress,
)

__all__ = [
    "ACTION_CAPABILITIES",
    "AUTOMATIC_REASON",
    "BulkCampaign",
    "BulkCampaignRunner",
    "CAMPAIGN_TRANSITIONS",
    "CampaignAction",
    "CampaignItemResult",
    "CampaignOptions",
    "CampaignProgress",
    "CampaignStatus",
    "CampaignStore",
    "ConditionRegistry",
    "DEFAULT_TRANSITION_RULES",
    "EditAccess",
    "EditGuard",
    "EditSession",
    "InMemoryCampaignStore",
    "LifecycleStateMachine",
    "PermissionDecision",
    "PermissionGate",
    "ProgressStep",
    "ROLE_CAPABILITIES",
    "TransitionCondition",
    "TransitionExecutor",
    "TransitionRequest",
    "TransitionResult",
    "TransitionRule",
    "ValidationOutcome",
    "WorkflowProgress",
    "action_for",
    "check_permission",
    "default_rules",
]
