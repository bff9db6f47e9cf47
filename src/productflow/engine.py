"""Workflow engine facade.

Wires every component from a ``ProductflowConfig`` and exposes the public
operations a host surfaces: transitions and legal-state queries, edit
sessions, bulk campaigns, audit queries and exports, reviewer management
and reviewer assignment. Every operation takes the caller's identity and
consults the permission gate; a missing identity is reported as
``UNAUTHENTICATED``, never defaulted.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import structlog

from productflow.audit import (
    AuditExport,
    AuditLedger,
    AuditPage,
    AuditQuery,
    AuditStats,
    ExportFormat,
    IntegrityReport,
)
from productflow.config import NotificationConfig, ProductflowConfig
from productflow.domain import (
    AuditEntry,
    FieldChange,
    Identity,
    LifecycleState,
    ProductRecord,
    ReviewerAvailability,
    ReviewerProfile,
    ReviewerSummary,
    TemporaryDelegation,
    WorkflowAction,
    utc_now,
)
from productflow.errors import ErrorCode, OperationResult, StorageError
from productflow.logging import bind_actor_context
from productflow.notifications import (
    CompositeNotifier,
    LoggingNotifier,
    Notifier,
    WebhookNotifier,
)
from productflow.reviewers import (
    AssignmentRequest,
    AssignmentResult,
    ReassignmentReport,
    ReviewerDelegationService,
    ReviewerDirectory,
    ReviewerSelector,
)
from productflow.storage import AuditFilter, InMemoryStorage, RecordFilter, StorageCollaborator
from productflow.workflow import (
    BulkCampaign,
    BulkCampaignRunner,
    CampaignAction,
    CampaignOptions,
    CampaignStore,
    ConditionRegistry,
    EditGuard,
    EditSession,
    LifecycleStateMachine,
    PermissionGate,
    TransitionExecutor,
    TransitionRequest,
    TransitionResult,
    ValidationOutcome,
    WorkflowProgress,
)

logger = structlog.get_logger(__name__)


def build_notifier(config: NotificationConfig) -> Notifier:
    """Logging notifier, plus a webhook when one is configured."""
    if config.webhook_url:
        return CompositeNotifier([LoggingNotifier(), WebhookNotifier(config)])
    return LoggingNotifier()


class WorkflowEngine:
    """Single entry point over the lifecycle workflow components.

    Attributes:
        config: Resolved configuration.
        storage: Storage collaborator.
        gate: Permission gate shared by every component.
        state_machine: Lifecycle rule table and validator.
        edit_guard: Advisory edit sessions.
        directory: Reviewer directory.
        selector: Reviewer assignment selector.
        executor: Transition executor.
        ledger: Audit ledger.
        runner: Bulk campaign runner.
        delegation: Reviewer reassignment service.
        notifier: Notification collaborator.
    """

    def __init__(
        self,
        config: ProductflowConfig | None = None,
        storage: StorageCollaborator | None = None,
        notifier: Notifier | None = None,
        campaign_store: CampaignStore | None = None,
        condition_registry: ConditionRegistry | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config or ProductflowConfig()
        self.storage = storage or InMemoryStorage()
        self.notifier = notifier or build_notifier(self.config.notifications)
        self._clock = clock

        self.gate = PermissionGate()
        self.state_machine = LifecycleStateMachine.from_config(
            self.config.workflow, gate=self.gate, registry=condition_registry
        )
        self.edit_guard = EditGuard(
            session_ttl_seconds=self.config.edit_guard.session_ttl_seconds, clock=clock
        )
        self.directory = ReviewerDirectory(self.config.reviewers, clock=clock)
        self.selector = ReviewerSelector(
            self.config.reviewers.default_require_availability, clock=clock
        )
        self.executor = TransitionExecutor(
            storage=self.storage,
            state_machine=self.state_machine,
            edit_guard=self.edit_guard,
            directory=self.directory,
            selector=self.selector,
            notifier=self.notifier,
            max_automatic_depth=self.config.workflow.max_automatic_depth,
            release_on_transition=self.config.edit_guard.release_on_transition,
            clock=clock,
        )
        self.ledger = AuditLedger(self.storage, self.config.audit, self.gate)
        self.runner = BulkCampaignRunner(
            executor=self.executor,
            storage=self.storage,
            store=campaign_store,
            config=self.config.bulk,
            gate=self.gate,
            notifier=self.notifier,
            clock=clock,
        )
        self.delegation = ReviewerDelegationService(self.directory, self.storage, clock=clock)
        self._logger = logger.bind(component="WorkflowEngine")

    # ------------------------------------------------------------------
    # Authorization helpers
    # ------------------------------------------------------------------

    def _authorize(
        self, identity: Identity | None, action: WorkflowAction
    ) -> OperationResult | None:
        if identity is None:
            return OperationResult.fail(ErrorCode.UNAUTHENTICATED, "Actor identity is required")
        bind_actor_context(identity.actor_id)
        decision = self.gate.check(identity.actor_role, action)
        if not decision.allowed:
            self._logger.info(
                "permission_denied",
                actor_id=identity.actor_id,
                role=identity.actor_role.value,
                action=action.value,
            )
            return OperationResult.fail(
                ErrorCode.PERMISSION_DENIED, decision.reason or "Permission denied"
            )
        return None

    def _authorize_self_or(
        self, identity: Identity | None, user_id: str, action: WorkflowAction
    ) -> OperationResult | None:
        """Reviewers may manage their own profile; others need ``action``."""
        if identity is not None and identity.actor_id == user_id:
            bind_actor_context(identity.actor_id)
            return None
        return self._authorize(identity, action)

    async def _load(self, record_id: str) -> OperationResult[ProductRecord]:
        try:
            record = await self.storage.get_record(record_id)
        except StorageError as exc:
            return OperationResult.fail(ErrorCode.STORAGE_ERROR, str(exc))
        if record is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, f"Record {record_id} not found")
        return OperationResult.ok(record)

    # ------------------------------------------------------------------
    # Records and transitions
    # ------------------------------------------------------------------

    async def create_record(
        self, record: ProductRecord, identity: Identity | None
    ) -> OperationResult[ProductRecord]:
        """Store a new record in the initial state with a creation audit entry."""
        denied = self._authorize(identity, WorkflowAction.EDIT)
        if denied is not None:
            return denied
        assert identity is not None

        existing = await self._load(record.id)
        if existing.success:
            return OperationResult.fail(ErrorCode.CONFLICT, f"Record {record.id} already exists")
        if existing.code == ErrorCode.STORAGE_ERROR:
            return existing

        now = self._clock()
        fresh = record.model_copy(
            deep=True,
            update={
                "lifecycle_state": LifecycleState.DRAFT,
                "state_history": [],
                "created_at": now,
                "updated_at": now,
            },
        )
        entry = AuditEntry.create(
            record_id=fresh.id,
            actor_id=identity.actor_id,
            actor_role=identity.actor_role.value,
            action="record_created",
            timestamp=now,
            field_changes=[FieldChange.between("lifecycle_state", None, LifecycleState.DRAFT.value)],
            resulting_state=LifecycleState.DRAFT,
        )
        try:
            await self.storage.save_transition(fresh, entry)
        except StorageError as exc:
            return OperationResult.fail(ErrorCode.STORAGE_ERROR, str(exc))
        self._logger.info("record_created", record_id=fresh.id, actor_id=identity.actor_id)
        return OperationResult.ok(fresh)

    async def get_record(
        self, record_id: str, identity: Identity | None
    ) -> OperationResult[ProductRecord]:
        denied = self._authorize(identity, WorkflowAction.VIEW_PRODUCTS)
        if denied is not None:
            return denied
        return await self._load(record_id)

    async def list_records(
        self,
        record_filter: RecordFilter,
        identity: Identity | None,
        limit: int | None = None,
        offset: int = 0,
    ) -> OperationResult[list[ProductRecord]]:
        denied = self._authorize(identity, WorkflowAction.VIEW_PRODUCTS)
        if denied is not None:
            return denied
        try:
            records = await self.storage.query_records(record_filter, limit=limit, offset=offset)
        except StorageError as exc:
            return OperationResult.fail(ErrorCode.STORAGE_ERROR, str(exc))
        return OperationResult.ok(records)

    async def request_transition(self, request: TransitionRequest) -> TransitionResult:
        """Execute one transition on behalf of ``request.identity``."""
        if request.identity is not None:
            bind_actor_context(request.identity.actor_id, record_id=request.record_id)
        return await self.executor.execute(request)

    async def validate_transition(self, request: TransitionRequest) -> ValidationOutcome:
        """Dry validation of a request against the stored record."""
        loaded = await self._load(request.record_id)
        record = loaded.data if loaded.success else None
        return self.state_machine.validate_transition(request, record)

    async def get_valid_next_states(
        self, record_id: str, identity: Identity | None
    ) -> OperationResult[list[LifecycleState]]:
        denied = self._authorize(identity, WorkflowAction.VIEW_PRODUCTS)
        if denied is not None:
            return denied
        assert identity is not None
        loaded = await self._load(record_id)
        if not loaded.success or loaded.data is None:
            return loaded  # type: ignore[return-value]
        return OperationResult.ok(
            self.state_machine.get_valid_next_states(
                loaded.data.lifecycle_state, identity.actor_role
            )
        )

    async def get_valid_previous_states(
        self, record_id: str, identity: Identity | None
    ) -> OperationResult[list[LifecycleState]]:
        denied = self._authorize(identity, WorkflowAction.VIEW_PRODUCTS)
        if denied is not None:
            return denied
        assert identity is not None
        loaded = await self._load(record_id)
        if not loaded.success or loaded.data is None:
            return loaded  # type: ignore[return-value]
        return OperationResult.ok(
            self.state_machine.get_valid_previous_states(
                loaded.data.lifecycle_state, identity.actor_role
            )
        )

    async def get_workflow_progress(
        self, record_id: str, identity: Identity | None
    ) -> OperationResult[WorkflowProgress]:
        denied = self._authorize(identity, WorkflowAction.VIEW_PRODUCTS)
        if denied is not None:
            return denied
        loaded = await self._load(record_id)
        if not loaded.success or loaded.data is None:
            return loaded  # type: ignore[return-value]
        return OperationResult.ok(self.state_machine.get_workflow_progress(loaded.data))

    async def validate_record_state(
        self, record_id: str, identity: Identity | None
    ) -> OperationResult[ValidationOutcome]:
        denied = self._authorize(identity, WorkflowAction.VIEW_PRODUCTS)
        if denied is not None:
            return denied
        loaded = await self._load(record_id)
        if not loaded.success or loaded.data is None:
            return loaded  # type: ignore[return-value]
        return OperationResult.ok(self.state_machine.validate_record_state(loaded.data))

    # ------------------------------------------------------------------
    # Edit sessions
    # ------------------------------------------------------------------

    async def start_edit_session(
        self, record_id: str, identity: Identity | None
    ) -> OperationResult[EditSession]:
        denied = self._authorize(identity, WorkflowAction.EDIT)
        if denied is not None:
            return denied
        assert identity is not None
        loaded = await self._load(record_id)
        if not loaded.success:
            return loaded  # type: ignore[return-value]
        access = self.edit_guard.start_session(record_id, identity)
        if not access.allowed:
            return OperationResult.fail(
                ErrorCode.CONFLICT, access.message or "Record is being edited", data=access.holder
            )
        return OperationResult.ok(access.holder)

    async def end_edit_session(
        self, record_id: str, identity: Identity | None
    ) -> OperationResult[bool]:
        if identity is None:
            return OperationResult.fail(ErrorCode.UNAUTHENTICATED, "Actor identity is required")
        ended = self.edit_guard.end_session(record_id, identity.actor_id)
        if not ended:
            return OperationResult.fail(
                ErrorCode.NOT_FOUND, f"No edit session on {record_id} held by {identity.actor_id}"
            )
        return OperationResult.ok(True)

    async def touch_edit_session(
        self, record_id: str, identity: Identity | None
    ) -> OperationResult[bool]:
        if identity is None:
            return OperationResult.fail(ErrorCode.UNAUTHENTICATED, "Actor identity is required")
        if not self.edit_guard.touch_session(record_id, identity.actor_id):
            return OperationResult.fail(
                ErrorCode.NOT_FOUND, f"No edit session on {record_id} held by {identity.actor_id}"
            )
        return OperationResult.ok(True)

    async def get_edit_session(
        self, record_id: str, identity: Identity | None
    ) -> OperationResult[EditSession | None]:
        denied = self._authorize(identity, WorkflowAction.VIEW_PRODUCTS)
        if denied is not None:
            return denied
        return OperationResult.ok(self.edit_guard.is_being_edited(record_id))

    # ------------------------------------------------------------------
    # Bulk campaigns
    # ------------------------------------------------------------------

    async def start_campaign(
        self,
        action: CampaignAction,
        filter_criteria: RecordFilter,
        identity: Identity | None,
        options: CampaignOptions | None = None,
    ) -> OperationResult[BulkCampaign]:
        if identity is not None:
            bind_actor_context(identity.actor_id)
        return await self.runner.start(action, filter_criteria, identity, options)

    async def get_campaign(
        self, campaign_id: str, identity: Identity | None
    ) -> OperationResult[BulkCampaign]:
        return await self.runner.get_campaign(campaign_id, identity)

    async def list_campaigns(self, identity: Identity | None) -> OperationResult[list[BulkCampaign]]:
        return await self.runner.list_campaigns(identity)

    async def cancel_campaign(
        self, campaign_id: str, identity: Identity | None
    ) -> OperationResult[BulkCampaign]:
        return await self.runner.cancel(campaign_id, identity)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def query_audit(
        self, query: AuditQuery, identity: Identity | None
    ) -> OperationResult[AuditPage]:
        return await self.ledger.query(query, identity)

    async def get_audit_entry(
        self, entry_id: str, identity: Identity | None
    ) -> OperationResult[AuditEntry]:
        return await self.ledger.get(entry_id, identity)

    async def get_record_history(
        self, record_id: str, identity: Identity | None
    ) -> OperationResult[list[AuditEntry]]:
        return await self.ledger.record_history(record_id, identity)

    async def audit_stats(
        self, audit_filter: AuditFilter, identity: Identity | None
    ) -> OperationResult[AuditStats]:
        return await self.ledger.aggregate(audit_filter, identity)

    async def export_audit(
        self, audit_filter: AuditFilter, fmt: ExportFormat, identity: Identity | None
    ) -> OperationResult[AuditExport]:
        return await self.ledger.export(audit_filter, fmt, identity)

    async def verify_audit(
        self, audit_filter: AuditFilter, identity: Identity | None
    ) -> OperationResult[IntegrityReport]:
        return await self.ledger.verify(audit_filter, identity)

    # ------------------------------------------------------------------
    # Reviewers
    # ------------------------------------------------------------------

    async def register_reviewer(
        self, profile: ReviewerProfile, identity: Identity | None
    ) -> OperationResult[ReviewerProfile]:
        denied = self._authorize(identity, WorkflowAction.MANAGE_REVIEWERS)
        if denied is not None:
            return denied
        return OperationResult.ok(self.directory.register(profile))

    async def list_reviewers(
        self, identity: Identity | None
    ) -> OperationResult[list[ReviewerSummary]]:
        denied = self._authorize(identity, WorkflowAction.VIEW_REVIEWERS)
        if denied is not None:
            return denied
        summaries = []
        for profile in self.directory.list_profiles():
            summary = self.directory.get_summary(profile.user_id)
            if summary.data is not None:
                summaries.append(summary.data)
        return OperationResult.ok(summaries)

    async def get_reviewer_summary(
        self, user_id: str, identity: Identity | None
    ) -> OperationResult[ReviewerSummary]:
        denied = self._authorize_self_or(identity, user_id, WorkflowAction.VIEW_REVIEWERS)
        if denied is not None:
            return denied
        return self.directory.get_summary(user_id)

    async def get_reviewer_availability(
        self, user_id: str, identity: Identity | None
    ) -> OperationResult[ReviewerAvailability]:
        denied = self._authorize_self_or(identity, user_id, WorkflowAction.VIEW_REVIEWERS)
        if denied is not None:
            return denied
        return self.directory.get_availability(user_id)

    async def set_reviewer_availability(
        self,
        user_id: str,
        availability: ReviewerAvailability,
        identity: Identity | None,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
        note: str | None = None,
    ) -> OperationResult[ReviewerProfile]:
        denied = self._authorize_self_or(identity, user_id, WorkflowAction.MANAGE_REVIEWERS)
        if denied is not None:
            return denied
        return self.directory.set_availability(user_id, availability, start_at, end_at, note)

    async def set_max_assignments(
        self, user_id: str, max_assignments: int, identity: Identity | None
    ) -> OperationResult[ReviewerProfile]:
        denied = self._authorize(identity, WorkflowAction.MANAGE_REVIEWERS)
        if denied is not None:
            return denied
        return self.directory.set_max_assignments(user_id, max_assignments)

    async def set_backup_reviewer(
        self, user_id: str, backup_reviewer_id: str | None, identity: Identity | None
    ) -> OperationResult[ReviewerProfile]:
        denied = self._authorize_self_or(identity, user_id, WorkflowAction.MANAGE_REVIEWERS)
        if denied is not None:
            return denied
        return self.directory.set_backup_reviewer(user_id, backup_reviewer_id)

    async def set_temporary_delegation(
        self, user_id: str, delegation: TemporaryDelegation, identity: Identity | None
    ) -> OperationResult[ReviewerProfile]:
        denied = self._authorize_self_or(identity, user_id, WorkflowAction.MANAGE_REVIEWERS)
        if denied is not None:
            return denied
        return self.directory.set_temporary_delegation(user_id, delegation)

    async def clear_delegation(
        self, user_id: str, identity: Identity | None
    ) -> OperationResult[ReviewerProfile]:
        denied = self._authorize_self_or(identity, user_id, WorkflowAction.MANAGE_REVIEWERS)
        if denied is not None:
            return denied
        return self.directory.clear_delegation(user_id)

    async def rate_reviewer(
        self, user_id: str, rating: int, identity: Identity | None
    ) -> OperationResult[float]:
        denied = self._authorize(identity, WorkflowAction.MANAGE_REVIEWERS)
        if denied is not None:
            return denied
        if self.directory.get_profile(user_id) is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, f"Reviewer {user_id} not found")
        return self.directory.add_rating(user_id, rating)

    async def request_assignment(
        self,
        request: AssignmentRequest,
        identity: Identity | None,
        reserve: bool = False,
    ) -> OperationResult[AssignmentResult]:
        """Pick a reviewer; with ``reserve`` the assignee's workload is counted."""
        denied = self._authorize(identity, WorkflowAction.ASSIGN_REVIEWER)
        if denied is not None:
            return denied
        result = self.selector.select(request, self.directory.list_profiles(request.pool))
        if result.success and result.data is not None and reserve:
            self.directory.record_assignment(result.data.assignee_id)
        return result

    async def reassign_reviews(
        self,
        from_reviewer_id: str,
        to_reviewer_id: str,
        identity: Identity | None,
        reason: str | None = None,
    ) -> OperationResult[ReassignmentReport]:
        denied = self._authorize(identity, WorkflowAction.REASSIGN_REVIEWER)
        if denied is not None:
            return denied
        assert identity is not None
        return await self.delegation.reassign_reviews(
            from_reviewer_id, to_reviewer_id, identity, reason=reason
        )

    async def delegate_during_absence(
        self, user_id: str, identity: Identity | None
    ) -> OperationResult[ReassignmentReport]:
        denied = self._authorize(identity, WorkflowAction.REASSIGN_REVIEWER)
        if denied is not None:
            return denied
        assert identity is not None
        return await self.delegation.delegate_during_absence(user_id, identity)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup(self) -> dict[str, int]:
        """Purge stale edit sessions and expired reviewer schedules."""
        return {
            "edit_sessions": self.edit_guard.cleanup_stale_sessions(),
            "reviewer_schedules": self.directory.purge_expired_schedules(),
        }

    async def shutdown(self) -> None:
        """Stop background campaigns and close outbound clients."""
        await self.runner.shutdown()
        notifiers = (
            self.notifier.notifiers
            if isinstance(self.notifier, CompositeNotifier)
            else [self.notifier]
        )
        for notifier in notifiers:
            if isinstance(notifier, WebhookNotifier):
                await notifier.close()
