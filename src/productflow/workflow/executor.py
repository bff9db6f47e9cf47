"""Transition executor for Productflow.

Orchestrates one lifecycle transition end to end:

1. Resolve the record and check the concurrent-edit guard.
2. Optionally pick a reviewer through the assignment selector.
3. Validate through the state machine (rules, roles, permission gate,
   preconditions, conditions).
4. Build the updated record and exactly one audit entry.
5. Persist both through ``save_transition`` in a single collaborator call.
6. Update reviewer workload, notify, then fire automatic follow-on rules.

Nothing here raises past ``execute``. Validation failures, conflicts and
storage errors all come back as a ``TransitionResult`` with
``success=False``, and a failed transition never leaves a record mutation
or audit entry behind.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from productflow.domain import (
    AuditEntry,
    FieldChange,
    Identity,
    LifecycleState,
    ProductRecord,
    StateHistoryEntry,
    utc_now,
)
from productflow.errors import ErrorCode, ErrorDetail, StorageError
from productflow.notifications.base import (
    NotificationEvent,
    NotificationEventType,
    Notifier,
)
from productflow.reviewers.directory import ReviewerDirectory
from productflow.reviewers.selector import ReviewerSelector
from productflow.storage.base import StorageCollaborator
from productflow.workflow.edit_guard import EditGuard
from productflow.workflow.models import TransitionRequest, TransitionResult
from productflow.workflow.rules import action_for
from productflow.workflow.state_machine import LifecycleStateMachine

logger = structlog.get_logger(__name__)

AUTOMATIC_REASON = "automatic transition"


def _error(code: ErrorCode, message: str) -> list[ErrorDetail]:
    return [ErrorDetail(code=code, message=message)]


class TransitionExecutor:
    """Executes lifecycle transitions against a storage collaborator.

    Attributes:
        storage: Storage collaborator owning records and audit entries.
        state_machine: Validates requests against the rule table.
        edit_guard: Optional advisory lock table.
        directory: Optional reviewer directory for workload bookkeeping.
        selector: Optional selector used when a request asks for
            automatic reviewer assignment.
        notifier: Optional notification collaborator.
        max_automatic_depth: Cap on chained automatic transitions.
        release_on_transition: End the actor's edit session on success.
    """

    def __init__(
        self,
        storage: StorageCollaborator,
        state_machine: LifecycleStateMachine | None = None,
        edit_guard: EditGuard | None = None,
        directory: ReviewerDirectory | None = None,
        selector: ReviewerSelector | None = None,
        notifier: Notifier | None = None,
        max_automatic_depth: int = 5,
        release_on_transition: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.storage = storage
        self.state_machine = state_machine or LifecycleStateMachine()
        self.edit_guard = edit_guard
        self.directory = directory
        self.selector = selector
        self.notifier = notifier
        self.max_automatic_depth = max_automatic_depth
        self.release_on_transition = release_on_transition
        self._clock = clock
        self._logger = logger.bind(component="TransitionExecutor")

    async def execute(
        self,
        request: TransitionRequest,
        current_record: ProductRecord | None = None,
    ) -> TransitionResult:
        """Execute one requested transition and any automatic follow-ons.

        Args:
            request: The transition request, including the actor identity.
            current_record: The record as the caller last read it. When
                omitted it is loaded from storage.

        Returns:
            TransitionResult describing the outcome.
        """
        identity = request.identity
        if identity is None:
            return TransitionResult.failure(
                _error(ErrorCode.UNAUTHENTICATED, "Actor identity is required")
            )

        record = current_record
        if record is None:
            try:
                record = await self.storage.get_record(request.record_id)
            except StorageError as exc:
                return TransitionResult.failure(_error(ErrorCode.STORAGE_ERROR, str(exc)))
            if record is None:
                return TransitionResult.failure(
                    _error(ErrorCode.NOT_FOUND, f"Record {request.record_id} not found")
                )
        elif record.id != request.record_id:
            return TransitionResult.failure(
                _error(ErrorCode.VALIDATION_ERROR, "Record does not match request record_id")
            )

        previous_state = record.lifecycle_state
        if request.from_state is not None and request.from_state != previous_state:
            return TransitionResult.failure(
                _error(
                    ErrorCode.VALIDATION_ERROR,
                    f"Record {record.id} is in {previous_state.value}, "
                    f"not {request.from_state.value}",
                ),
                previous_state=previous_state,
            )

        if self.edit_guard is not None:
            access = self.edit_guard.check_access(record.id, identity.actor_id)
            if not access.allowed:
                return TransitionResult.failure(
                    _error(ErrorCode.CONFLICT, access.message or "Record is being edited"),
                    previous_state=previous_state,
                )

        substituted_from: str | None = None
        if (
            request.to_state == LifecycleState.REVIEW
            and not request.assigned_reviewer_id
            and request.auto_assign is not None
        ):
            if self.selector is None or self.directory is None:
                return TransitionResult.failure(
                    _error(ErrorCode.VALIDATION_ERROR, "Automatic reviewer assignment is not configured"),
                    previous_state=previous_state,
                )
            profiles = self.directory.list_profiles(request.auto_assign.pool)
            selection = self.selector.select(request.auto_assign, profiles)
            if not selection.success or selection.data is None:
                return TransitionResult.failure(selection.errors, previous_state=previous_state)
            request = request.model_copy(
                update={"assigned_reviewer_id": selection.data.assignee_id}
            )
            substituted_from = selection.data.delegated_from

        result = await self._execute(
            request, record, depth=0, visited=frozenset({request.to_state})
        )
        result.assignee_substituted_from = substituted_from

        if (
            result.success
            and self.edit_guard is not None
            and self.release_on_transition
        ):
            self.edit_guard.end_session(record.id, identity.actor_id)
        return result

    # ------------------------------------------------------------------
    # Internal steps
    # ------------------------------------------------------------------

    async def _execute(
        self,
        request: TransitionRequest,
        record: ProductRecord,
        depth: int,
        visited: frozenset[LifecycleState],
        automatic: bool = False,
    ) -> TransitionResult:
        identity = request.identity
        assert identity is not None
        previous_state = record.lifecycle_state

        outcome = self.state_machine.validate_transition(request, record)
        if not outcome.is_valid:
            return TransitionResult.failure(
                outcome.errors, previous_state=previous_state, warnings=outcome.warnings
            )

        now = self._clock()
        updated = self._apply(record, request, identity, now)
        entry = AuditEntry.create(
            record_id=record.id,
            actor_id=identity.actor_id,
            actor_role=identity.actor_role.value,
            action=action_for(previous_state, request.to_state),
            timestamp=now,
            field_changes=self._field_changes(record, updated),
            reason=request.reason,
            comment=request.comment,
            resulting_state=request.to_state,
            metadata=self._metadata(request, identity, previous_state, automatic),
        )

        try:
            await self.storage.save_transition(updated, entry)
        except StorageError as exc:
            self._logger.error(
                "transition_storage_failed",
                record_id=record.id,
                from_state=previous_state.value,
                to_state=request.to_state.value,
                error=str(exc),
            )
            return TransitionResult.failure(
                _error(ErrorCode.STORAGE_ERROR, str(exc)),
                previous_state=previous_state,
                warnings=outcome.warnings,
            )

        self._logger.info(
            "transition_executed",
            record_id=record.id,
            actor_id=identity.actor_id,
            from_state=previous_state.value,
            to_state=request.to_state.value,
            audit_entry_id=entry.id,
            automatic=automatic,
        )

        self._update_reviewer_workload(record, updated, now)
        await self._notify(record, updated, entry, identity)

        result = TransitionResult(
            success=True,
            previous_state=previous_state,
            new_state=updated.lifecycle_state,
            record=updated,
            audit_entry=entry,
            warnings=list(outcome.warnings),
        )
        await self._run_automatic(result, updated, identity, entry, depth, visited)
        return result

    async def _run_automatic(
        self,
        result: TransitionResult,
        record: ProductRecord,
        identity: Identity,
        trigger: AuditEntry,
        depth: int,
        visited: frozenset[LifecycleState],
    ) -> None:
        current = record
        for rule in self.state_machine.get_automatic_rules(current.lifecycle_state):
            if depth + 1 > self.max_automatic_depth:
                result.warnings.append(
                    f"Automatic transition depth limit {self.max_automatic_depth} reached"
                )
                self._logger.warning(
                    "automatic_transition_depth_exceeded",
                    record_id=record.id,
                    state=current.lifecycle_state.value,
                )
                return
            if rule.to_state in visited:
                result.warnings.append(
                    f"Automatic transition to {rule.to_state.value} skipped: "
                    "state already visited in this execution"
                )
                self._logger.warning(
                    "automatic_transition_cycle",
                    record_id=record.id,
                    from_state=rule.from_state.value,
                    to_state=rule.to_state.value,
                )
                continue

            auto_request = TransitionRequest(
                record_id=current.id,
                to_state=rule.to_state,
                from_state=current.lifecycle_state,
                identity=Identity(
                    actor_id=identity.actor_id,
                    actor_role=rule.required_role,
                    actor_name=identity.actor_name,
                    actor_email=identity.actor_email,
                ),
                reason=AUTOMATIC_REASON,
                metadata={"triggered_by": trigger.id},
            )
            sub_result = await self._execute(
                auto_request,
                current,
                depth=depth + 1,
                visited=visited | {rule.to_state},
                automatic=True,
            )
            result.automatic_transitions.append(sub_result)
            if sub_result.success and sub_result.record is not None:
                # Later automatic rules no longer apply once the state moved
                result.record = sub_result.record
                return
            self._logger.warning(
                "automatic_transition_failed",
                record_id=current.id,
                to_state=rule.to_state.value,
                error=sub_result.error,
            )

    def _apply(
        self,
        record: ProductRecord,
        request: TransitionRequest,
        identity: Identity,
        now: datetime,
    ) -> ProductRecord:
        """Build the updated copy of ``record``; the input is not touched."""
        target = request.to_state
        history = [h.model_copy() for h in record.state_history]
        history.append(
            StateHistoryEntry(
                state=target,
                timestamp=now,
                actor_id=identity.actor_id,
                reason=request.reason,
                comment=request.comment,
            )
        )
        update: dict[str, Any] = {
            "lifecycle_state": target,
            "state_history": history,
            "updated_at": now,
        }

        if target == LifecycleState.REVIEW:
            update["submitted_by"] = identity.actor_id
            update["submitted_at"] = now
            update["assigned_reviewer_id"] = request.assigned_reviewer_id
        elif target == LifecycleState.APPROVED:
            update["reviewed_by"] = identity.actor_id
            update["reviewed_at"] = now
        elif target == LifecycleState.REJECTED:
            update["rejection_reason"] = (request.reason or "").strip()
            update["reviewed_by"] = identity.actor_id
            update["reviewed_at"] = now
        elif target == LifecycleState.PUBLISHED:
            update["published_by"] = identity.actor_id
            update["published_at"] = now

        if record.lifecycle_state == LifecycleState.REJECTED and target == LifecycleState.DRAFT:
            update["rejection_reason"] = None

        return record.model_copy(deep=True, update=update)

    @staticmethod
    def _field_changes(before: ProductRecord, after: ProductRecord) -> list[FieldChange]:
        changes = [
            FieldChange.between(
                "lifecycle_state",
                before.lifecycle_state.value,
                after.lifecycle_state.value,
            )
        ]
        if after.lifecycle_state == LifecycleState.REVIEW:
            changes.append(
                FieldChange.between(
                    "assigned_reviewer_id",
                    before.assigned_reviewer_id,
                    after.assigned_reviewer_id,
                )
            )
        if before.rejection_reason != after.rejection_reason:
            changes.append(
                FieldChange.between(
                    "rejection_reason", before.rejection_reason, after.rejection_reason
                )
            )
        return changes

    @staticmethod
    def _metadata(
        request: TransitionRequest,
        identity: Identity,
        previous_state: LifecycleState,
        automatic: bool,
    ) -> dict[str, Any]:
        metadata: dict[str, Any] = dict(request.metadata)
        metadata["transition"] = f"{previous_state.value}->{request.to_state.value}"
        metadata["automatic"] = automatic
        if identity.actor_name:
            metadata["actor_name"] = identity.actor_name
        if identity.actor_email:
            metadata["actor_email"] = identity.actor_email
        return metadata

    def _update_reviewer_workload(
        self,
        before: ProductRecord,
        after: ProductRecord,
        now: datetime,
    ) -> None:
        if self.directory is None:
            return
        if before.lifecycle_state == LifecycleState.REVIEW and before.assigned_reviewer_id:
            approved: bool | None = None
            if after.lifecycle_state == LifecycleState.APPROVED:
                approved = True
            elif after.lifecycle_state == LifecycleState.REJECTED:
                approved = False
            duration = None
            if before.submitted_at is not None:
                duration = (now - before.submitted_at).total_seconds()
            self.directory.complete_review(
                before.assigned_reviewer_id, approved, duration_seconds=duration
            )
        if after.lifecycle_state == LifecycleState.REVIEW and after.assigned_reviewer_id:
            self.directory.record_assignment(after.assigned_reviewer_id, at=now)

    async def _notify(
        self,
        before: ProductRecord,
        after: ProductRecord,
        entry: AuditEntry,
        identity: Identity,
    ) -> None:
        if self.notifier is None:
            return
        event_type = (
            NotificationEventType.REVIEW_REQUESTED
            if after.lifecycle_state == LifecycleState.REVIEW
            else NotificationEventType.TRANSITION_COMPLETED
        )
        event = NotificationEvent(
            event_type=event_type,
            timestamp=entry.timestamp,
            actor_id=identity.actor_id,
            record_id=after.id,
            action=entry.action,
            from_state=before.lifecycle_state.value,
            to_state=after.lifecycle_state.value,
            data={
                "audit_entry_id": entry.id,
                "assigned_reviewer_id": after.assigned_reviewer_id,
                "reason": entry.reason,
            },
        )
        try:
            await self.notifier.notify(event)
        except Exception as exc:
            self._logger.warning(
                "transition_notification_failed",
                record_id=after.id,
                event_type=event_type.value,
                error=str(exc),
            )
