"""Unit tests for the transition executor.

Tests cover:
- Successful transitions: record update, history, audit entry, field changes
- Failed validation leaves storage untouched
- The automatic REJECTED -> DRAFT follow-on, its depth cap and cycle guard
- Storage failures surfaced as STORAGE_ERROR with nothing persisted
- Edit session conflicts, automatic reviewer assignment and notifications
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from productflow.domain import (
    Identity,
    LifecycleState,
    ProductRecord,
    ReviewerProfile,
    Role,
    TemporaryDelegation,
)
from productflow.errors import ErrorCode, StorageError
from productflow.notifications import InMemoryNotifier, NotificationEventType
from productflow.reviewers import (
    AssignmentPolicy,
    AssignmentRequest,
    ReviewerDirectory,
    ReviewerSelector,
)
from productflow.storage import AuditFilter, InMemoryStorage
from productflow.workflow import (
    AUTOMATIC_REASON,
    EditGuard,
    LifecycleStateMachine,
    TransitionExecutor,
    TransitionRequest,
    TransitionRule,
)

S = LifecycleState


@pytest.fixture
def directory(clock) -> ReviewerDirectory:
    return ReviewerDirectory(clock=clock)


@pytest.fixture
def edit_guard(clock) -> EditGuard:
    return EditGuard(clock=clock)


@pytest.fixture
def executor(
    storage: InMemoryStorage,
    edit_guard: EditGuard,
    directory: ReviewerDirectory,
    notifier: InMemoryNotifier,
    clock,
) -> TransitionExecutor:
    return TransitionExecutor(
        storage=storage,
        edit_guard=edit_guard,
        directory=directory,
        selector=ReviewerSelector(clock=clock),
        notifier=notifier,
        clock=clock,
    )


async def _audit_for(storage: InMemoryStorage, record_id: str):
    return await storage.query_audit_entries(AuditFilter(record_id=record_id), descending=False)


class TestSubmit:
    """Test the DRAFT -> REVIEW submission path."""

    @pytest.mark.asyncio
    async def test_submit_updates_record_and_writes_audit(
        self,
        executor: TransitionExecutor,
        storage: InMemoryStorage,
        draft_record: ProductRecord,
        editor: Identity,
        clock,
    ) -> None:
        """Test a valid submission end to end."""
        result = await executor.execute(
            TransitionRequest(
                record_id="prod-1",
                to_state=S.REVIEW,
                identity=editor,
                assigned_reviewer_id="rev-1",
                comment="ready",
            )
        )

        assert result.success is True
        assert result.previous_state == S.DRAFT
        assert result.new_state == S.REVIEW
        assert result.automatic_transitions == []

        stored = await storage.get_record("prod-1")
        assert stored is not None
        assert stored.lifecycle_state == S.REVIEW
        assert stored.submitted_by == "ed-1"
        assert stored.submitted_at == clock.now
        assert stored.assigned_reviewer_id == "rev-1"
        assert [h.state for h in stored.state_history] == [S.REVIEW]
        assert stored.state_history[-1].comment == "ready"
        assert stored.is_consistent()

        entry = result.audit_entry
        assert entry is not None
        assert entry.action == "submit"
        assert entry.actor_id == "ed-1"
        assert entry.actor_role == "editor"
        assert entry.resulting_state == S.REVIEW
        assert [c.field for c in entry.field_changes] == [
            "lifecycle_state",
            "assigned_reviewer_id",
        ]
        assert entry.field_changes[0].previous_value == "DRAFT"
        assert entry.field_changes[0].new_value == "REVIEW"
        assert entry.field_changes[1].new_value == "rev-1"
        assert entry.metadata["transition"] == "DRAFT->REVIEW"
        assert entry.metadata["automatic"] is False
        assert entry.verify_integrity()

        entries = await _audit_for(storage, "prod-1")
        assert [e.id for e in entries] == [entry.id]

    @pytest.mark.asyncio
    async def test_caller_record_is_not_mutated(
        self,
        executor: TransitionExecutor,
        draft_record: ProductRecord,
        editor: Identity,
    ) -> None:
        await executor.execute(
            TransitionRequest(
                record_id="prod-1", to_state=S.REVIEW, identity=editor, assigned_reviewer_id="rev-1"
            ),
            current_record=draft_record,
        )
        assert draft_record.lifecycle_state == S.DRAFT
        assert draft_record.state_history == []

    @pytest.mark.asyncio
    async def test_submit_without_reviewer_fails(
        self,
        executor: TransitionExecutor,
        storage: InMemoryStorage,
        draft_record: ProductRecord,
        editor: Identity,
    ) -> None:
        result = await executor.execute(
            TransitionRequest(record_id="prod-1", to_state=S.REVIEW, identity=editor)
        )
        assert result.success is False
        assert result.code == ErrorCode.MISSING_PRECONDITION
        assert (await storage.get_record("prod-1")).lifecycle_state == S.DRAFT
        assert await _audit_for(storage, "prod-1") == []

    @pytest.mark.asyncio
    async def test_review_requested_notification(
        self,
        executor: TransitionExecutor,
        notifier: InMemoryNotifier,
        draft_record: ProductRecord,
        editor: Identity,
    ) -> None:
        await executor.execute(
            TransitionRequest(
                record_id="prod-1", to_state=S.REVIEW, identity=editor, assigned_reviewer_id="rev-1"
            )
        )
        events = notifier.of_type(NotificationEventType.REVIEW_REQUESTED)
        assert len(events) == 1
        assert events[0].record_id == "prod-1"
        assert events[0].data["assigned_reviewer_id"] == "rev-1"

    @pytest.mark.asyncio
    async def test_submission_counts_reviewer_workload(
        self,
        executor: TransitionExecutor,
        directory: ReviewerDirectory,
        draft_record: ProductRecord,
        editor: Identity,
        clock,
    ) -> None:
        await executor.execute(
            TransitionRequest(
                record_id="prod-1", to_state=S.REVIEW, identity=editor, assigned_reviewer_id="rev-9"
            )
        )
        profile = directory.get_profile("rev-9")
        assert profile is not None
        assert profile.current_assignments == 1
        assert profile.last_assigned_at == clock.now


class TestRejectAndAutomaticRevert:
    """Test rejection and the automatic return to DRAFT."""

    @pytest.mark.asyncio
    async def test_reject_without_reason_leaves_record_unchanged(
        self,
        executor: TransitionExecutor,
        storage: InMemoryStorage,
        review_record: ProductRecord,
        reviewer: Identity,
    ) -> None:
        """Test that a missing rejection reason blocks the transition."""
        result = await executor.execute(
            TransitionRequest(record_id="prod-2", to_state=S.REJECTED, identity=reviewer)
        )

        assert result.success is False
        assert result.code == ErrorCode.MISSING_PRECONDITION
        assert "Rejection reason is required" in (result.error or "")
        stored = await storage.get_record("prod-2")
        assert stored == review_record
        assert await _audit_for(storage, "prod-2") == []

    @pytest.mark.asyncio
    async def test_submit_reject_round_trip(
        self,
        executor: TransitionExecutor,
        storage: InMemoryStorage,
        draft_record: ProductRecord,
        editor: Identity,
        reviewer: Identity,
    ) -> None:
        """Test that a rejected record returns to DRAFT automatically."""
        submitted = await executor.execute(
            TransitionRequest(
                record_id="prod-1", to_state=S.REVIEW, identity=editor, assigned_reviewer_id="rev-1"
            )
        )
        assert submitted.success

        rejected = await executor.execute(
            TransitionRequest(
                record_id="prod-1",
                to_state=S.REJECTED,
                identity=reviewer,
                reason="Missing images",
            )
        )

        assert rejected.success is True
        assert rejected.new_state == S.REJECTED
        assert len(rejected.automatic_transitions) == 1
        follow_on = rejected.automatic_transitions[0]
        assert follow_on.success is True
        assert follow_on.previous_state == S.REJECTED
        assert follow_on.new_state == S.DRAFT

        stored = await storage.get_record("prod-1")
        assert stored is not None
        assert stored.lifecycle_state == S.DRAFT
        assert stored.rejection_reason is None
        assert stored.reviewed_by == "rev-1"
        assert [h.state for h in stored.state_history] == [S.REVIEW, S.REJECTED, S.DRAFT]
        assert rejected.record == stored

        revert_entry = follow_on.audit_entry
        assert revert_entry is not None
        assert revert_entry.action == "revert_to_draft"
        assert revert_entry.actor_id == "rev-1"
        assert revert_entry.actor_role == "editor"
        assert revert_entry.reason == AUTOMATIC_REASON
        assert revert_entry.metadata["automatic"] is True
        assert revert_entry.metadata["triggered_by"] == rejected.audit_entry.id
        assert {c.field for c in revert_entry.field_changes} == {
            "lifecycle_state",
            "rejection_reason",
        }

        actions = {e.action for e in await _audit_for(storage, "prod-1")}
        assert actions == {"submit", "reject", "revert_to_draft"}

    @pytest.mark.asyncio
    async def test_reject_completes_review_metrics(
        self,
        executor: TransitionExecutor,
        directory: ReviewerDirectory,
        review_record: ProductRecord,
        reviewer: Identity,
    ) -> None:
        directory.record_assignment("rev-1")
        await executor.execute(
            TransitionRequest(
                record_id="prod-2", to_state=S.REJECTED, identity=reviewer, reason="Blurry"
            )
        )
        profile = directory.get_profile("rev-1")
        assert profile.current_assignments == 0
        assert profile.reviews_completed == 1
        assert profile.rejections == 1

    @pytest.mark.asyncio
    async def test_depth_cap_stops_automatic_transition(
        self,
        storage: InMemoryStorage,
        review_record: ProductRecord,
        reviewer: Identity,
    ) -> None:
        executor = TransitionExecutor(storage=storage, max_automatic_depth=0)
        result = await executor.execute(
            TransitionRequest(
                record_id="prod-2", to_state=S.REJECTED, identity=reviewer, reason="Blurry"
            )
        )
        assert result.success is True
        assert result.automatic_transitions == []
        assert result.record.lifecycle_state == S.REJECTED
        assert "Automatic transition depth limit 0 reached" in result.warnings

    @pytest.mark.asyncio
    async def test_cycle_guard_skips_visited_state(
        self,
        storage: InMemoryStorage,
        review_record: ProductRecord,
        reviewer: Identity,
    ) -> None:
        """Test that automatic rules never revisit a state within one execution."""
        machine = LifecycleStateMachine(
            rules=[
                TransitionRule(S.REVIEW, S.REJECTED, Role.REVIEWER),
                TransitionRule(S.REJECTED, S.DRAFT, Role.EDITOR, is_automatic=True),
                TransitionRule(S.DRAFT, S.REJECTED, Role.EDITOR, is_automatic=True),
            ]
        )
        executor = TransitionExecutor(storage=storage, state_machine=machine)

        result = await executor.execute(
            TransitionRequest(
                record_id="prod-2", to_state=S.REJECTED, identity=reviewer, reason="Blurry"
            )
        )

        assert result.success is True
        assert result.record.lifecycle_state == S.DRAFT
        follow_on = result.automatic_transitions[0]
        assert follow_on.automatic_transitions == []
        assert any("skipped" in w for w in follow_on.warnings)


class TestFailures:
    """Test failure paths."""

    @pytest.mark.asyncio
    async def test_missing_identity(
        self, executor: TransitionExecutor, draft_record: ProductRecord
    ) -> None:
        result = await executor.execute(
            TransitionRequest(record_id="prod-1", to_state=S.REVIEW, assigned_reviewer_id="r")
        )
        assert result.success is False
        assert result.code == ErrorCode.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_unknown_record(self, executor: TransitionExecutor, editor: Identity) -> None:
        result = await executor.execute(
            TransitionRequest(record_id="nope", to_state=S.REVIEW, identity=editor)
        )
        assert result.code == ErrorCode.NOT_FOUND
        assert result.error == "Record nope not found"

    @pytest.mark.asyncio
    async def test_stale_from_state(
        self, executor: TransitionExecutor, draft_record: ProductRecord, reviewer: Identity
    ) -> None:
        result = await executor.execute(
            TransitionRequest(
                record_id="prod-1", to_state=S.APPROVED, from_state=S.REVIEW, identity=reviewer
            )
        )
        assert result.code == ErrorCode.VALIDATION_ERROR
        assert result.error == "Record prod-1 is in DRAFT, not REVIEW"

    @pytest.mark.asyncio
    async def test_illegal_edge(
        self, executor: TransitionExecutor, draft_record: ProductRecord, admin: Identity
    ) -> None:
        result = await executor.execute(
            TransitionRequest(record_id="prod-1", to_state=S.PUBLISHED, identity=admin)
        )
        assert result.code == ErrorCode.INVALID_TRANSITION

    @pytest.mark.asyncio
    async def test_storage_failure_persists_nothing(
        self,
        make_record,
        editor: Identity,
        notifier: InMemoryNotifier,
        clock,
    ) -> None:
        """Test that a failed write is reported and nothing else happens."""
        storage = AsyncMock()
        storage.get_record.return_value = make_record("prod-1")
        storage.save_transition.side_effect = StorageError("disk full", "save_transition")
        directory = ReviewerDirectory(clock=clock)
        executor = TransitionExecutor(
            storage=storage, directory=directory, notifier=notifier, clock=clock
        )

        result = await executor.execute(
            TransitionRequest(
                record_id="prod-1", to_state=S.REVIEW, identity=editor, assigned_reviewer_id="rev-1"
            )
        )

        assert result.success is False
        assert result.code == ErrorCode.STORAGE_ERROR
        assert result.error == "save_transition: disk full"
        assert result.previous_state == S.DRAFT
        storage.save_transition.assert_awaited_once()
        assert notifier.events == []
        assert directory.get_profile("rev-1") is None

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_fail_transition(
        self, storage: InMemoryStorage, draft_record: ProductRecord, editor: Identity
    ) -> None:
        failing = AsyncMock()
        failing.notify.side_effect = RuntimeError("smtp down")
        executor = TransitionExecutor(storage=storage, notifier=failing)

        result = await executor.execute(
            TransitionRequest(
                record_id="prod-1", to_state=S.REVIEW, identity=editor, assigned_reviewer_id="rev-1"
            )
        )
        assert result.success is True
        failing.notify.assert_awaited_once()


class TestEditSessions:
    """Test edit guard integration."""

    @pytest.mark.asyncio
    async def test_conflict_when_another_actor_is_editing(
        self,
        executor: TransitionExecutor,
        edit_guard: EditGuard,
        storage: InMemoryStorage,
        draft_record: ProductRecord,
        editor: Identity,
        other_editor: Identity,
    ) -> None:
        edit_guard.start_session("prod-1", other_editor)

        result = await executor.execute(
            TransitionRequest(
                record_id="prod-1", to_state=S.REVIEW, identity=editor, assigned_reviewer_id="rev-1"
            )
        )

        assert result.success is False
        assert result.code == ErrorCode.CONFLICT
        assert result.error == "Record prod-1 is being edited by Eddie Other"
        assert (await storage.get_record("prod-1")).lifecycle_state == S.DRAFT

    @pytest.mark.asyncio
    async def test_own_session_is_released_on_success(
        self,
        executor: TransitionExecutor,
        edit_guard: EditGuard,
        draft_record: ProductRecord,
        editor: Identity,
    ) -> None:
        edit_guard.start_session("prod-1", editor)

        result = await executor.execute(
            TransitionRequest(
                record_id="prod-1", to_state=S.REVIEW, identity=editor, assigned_reviewer_id="rev-1"
            )
        )

        assert result.success is True
        assert edit_guard.is_being_edited("prod-1") is None

    @pytest.mark.asyncio
    async def test_stale_session_does_not_block(
        self,
        executor: TransitionExecutor,
        edit_guard: EditGuard,
        draft_record: ProductRecord,
        editor: Identity,
        other_editor: Identity,
        clock,
    ) -> None:
        edit_guard.start_session("prod-1", other_editor)
        clock.advance(minutes=31)

        result = await executor.execute(
            TransitionRequest(
                record_id="prod-1", to_state=S.REVIEW, identity=editor, assigned_reviewer_id="rev-1"
            )
        )
        assert result.success is True


class TestAutoAssign:
    """Test reviewer selection during submission."""

    @pytest.mark.asyncio
    async def test_workload_policy_picks_least_loaded(
        self,
        executor: TransitionExecutor,
        directory: ReviewerDirectory,
        storage: InMemoryStorage,
        draft_record: ProductRecord,
        editor: Identity,
    ) -> None:
        directory.register(ReviewerProfile(user_id="rev-a", current_assignments=8))
        directory.register(ReviewerProfile(user_id="rev-b", current_assignments=2))

        result = await executor.execute(
            TransitionRequest(
                record_id="prod-1",
                to_state=S.REVIEW,
                identity=editor,
                auto_assign=AssignmentRequest(policy=AssignmentPolicy.WORKLOAD),
            )
        )

        assert result.success is True
        assert result.record.assigned_reviewer_id == "rev-b"
        assert result.assignee_substituted_from is None
        assert directory.get_profile("rev-b").current_assignments == 3

    @pytest.mark.asyncio
    async def test_delegation_substitutes_assignee(
        self,
        executor: TransitionExecutor,
        directory: ReviewerDirectory,
        draft_record: ProductRecord,
        editor: Identity,
        clock,
    ) -> None:
        directory.register(ReviewerProfile(user_id="rev-x"))
        directory.register(ReviewerProfile(user_id="rev-y"))
        directory.set_temporary_delegation(
            "rev-x",
            TemporaryDelegation(
                delegate_id="rev-y",
                start_at=clock.now - timedelta(days=1),
                end_at=clock.now + timedelta(days=1),
            ),
        )

        result = await executor.execute(
            TransitionRequest(
                record_id="prod-1",
                to_state=S.REVIEW,
                identity=editor,
                auto_assign=AssignmentRequest(pool=["rev-x"]),
            )
        )

        assert result.success is True
        assert result.record.assigned_reviewer_id == "rev-y"
        assert result.assignee_substituted_from == "rev-x"

    @pytest.mark.asyncio
    async def test_empty_pool_fails_submission(
        self,
        executor: TransitionExecutor,
        draft_record: ProductRecord,
        editor: Identity,
    ) -> None:
        result = await executor.execute(
            TransitionRequest(
                record_id="prod-1",
                to_state=S.REVIEW,
                identity=editor,
                auto_assign=AssignmentRequest(pool=["ghost"]),
            )
        )
        assert result.code == ErrorCode.NO_ELIGIBLE_REVIEWER

    @pytest.mark.asyncio
    async def test_auto_assign_needs_selector(
        self, storage: InMemoryStorage, draft_record: ProductRecord, editor: Identity
    ) -> None:
        executor = TransitionExecutor(storage=storage)
        result = await executor.execute(
            TransitionRequest(
                record_id="prod-1",
                to_state=S.REVIEW,
                identity=editor,
                auto_assign=AssignmentRequest(),
            )
        )
        assert result.code == ErrorCode.VALIDATION_ERROR
