"""Unit tests for the bulk campaign runner.

Tests cover:
- Up-front validation: permissions, batch size, required options
- The record ceiling boundary
- Partial success with per-item errors
- Dry runs, cancellation, record claims and completion notifications
"""

from __future__ import annotations

from datetime import datetime

import pytest

from productflow.config import BulkConfig
from productflow.domain import Identity, LifecycleState
from productflow.errors import ErrorCode
from productflow.notifications import InMemoryNotifier, NotificationEventType
from productflow.storage import InMemoryStorage, RecordFilter
from productflow.workflow import (
    BulkCampaignRunner,
    CampaignAction,
    CampaignOptions,
    CampaignStatus,
    TransitionExecutor,
)

S = LifecycleState


def _runner(storage: InMemoryStorage, notifier=None, **config) -> BulkCampaignRunner:
    config.setdefault("inter_batch_pause_seconds", 0)
    return BulkCampaignRunner(
        executor=TransitionExecutor(storage=storage),
        storage=storage,
        config=BulkConfig(**config),
        notifier=notifier,
    )


async def _seed(storage: InMemoryStorage, make_record, states: list[LifecycleState]) -> list[str]:
    ids = []
    for index, state in enumerate(states, start=1):
        record = make_record(f"prod-{index:04d}", state, assigned_reviewer_id="rev-1")
        await storage.save_record(record)
        ids.append(record.id)
    return ids


class TestStartValidation:
    """Test checks made before a campaign is created."""

    @pytest.mark.asyncio
    async def test_requires_identity(self, storage: InMemoryStorage) -> None:
        result = await _runner(storage).start(CampaignAction.APPROVE, RecordFilter(), None)
        assert result.code == ErrorCode.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_non_admin_is_denied(
        self, storage: InMemoryStorage, editor: Identity
    ) -> None:
        result = await _runner(storage).start(CampaignAction.SUBMIT, RecordFilter(), editor)
        assert result.code == ErrorCode.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_batch_size_limit(self, storage: InMemoryStorage, admin: Identity) -> None:
        result = await _runner(storage, max_batch_size=20).start(
            CampaignAction.APPROVE, RecordFilter(), admin, CampaignOptions(batch_size=21)
        )
        assert result.code == ErrorCode.VALIDATION_ERROR
        assert result.error == "Batch size 21 exceeds maximum of 20"

    @pytest.mark.asyncio
    async def test_submit_needs_reviewer(self, storage: InMemoryStorage, admin: Identity) -> None:
        result = await _runner(storage).start(CampaignAction.SUBMIT, RecordFilter(), admin)
        assert result.code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_reject_needs_reason(self, storage: InMemoryStorage, admin: Identity) -> None:
        result = await _runner(storage).start(
            CampaignAction.REJECT, RecordFilter(), admin, CampaignOptions(reason="  ")
        )
        assert result.code == ErrorCode.VALIDATION_ERROR
        assert result.error == "Reject campaigns require a reason"

    @pytest.mark.asyncio
    async def test_empty_record_set(self, storage: InMemoryStorage, admin: Identity) -> None:
        result = await _runner(storage).start(
            CampaignAction.APPROVE, RecordFilter(states=[S.REVIEW]), admin
        )
        assert result.code == ErrorCode.NOT_FOUND
        assert result.error == "No matching records found for the given criteria"


class TestCapacity:
    """Test the record ceiling."""

    @pytest.mark.asyncio
    async def test_ceiling_boundary(
        self, storage: InMemoryStorage, make_record, admin: Identity
    ) -> None:
        """Test that exactly max_items is accepted and one more is refused."""
        await _seed(storage, make_record, [S.REVIEW] * 1000)
        runner = _runner(storage)

        at_limit = await runner.start(
            CampaignAction.APPROVE, RecordFilter(), admin, CampaignOptions(dry_run=True)
        )
        assert at_limit.success is True
        assert at_limit.data.total_items == 1000

        await storage.save_record(make_record("prod-extra", S.REVIEW, assigned_reviewer_id="rev-1"))
        over = await runner.start(
            CampaignAction.APPROVE, RecordFilter(), admin, CampaignOptions(dry_run=True)
        )
        assert over.success is False
        assert over.code == ErrorCode.CAPACITY_EXCEEDED
        assert over.error == "Record set exceeds maximum limit of 1000"


class TestExecution:
    """Test real campaign runs."""

    @pytest.mark.asyncio
    async def test_partial_success(
        self,
        storage: InMemoryStorage,
        make_record,
        admin: Identity,
        notifier: InMemoryNotifier,
    ) -> None:
        """Test that one wrong-state record fails alone and the campaign completes."""
        ids = await _seed(storage, make_record, [S.REVIEW, S.DRAFT, S.REVIEW])
        runner = _runner(storage, notifier=notifier)

        started = await runner.start(
            CampaignAction.APPROVE,
            RecordFilter(record_ids=ids),
            admin,
            CampaignOptions(batch_size=2),
        )
        assert started.success is True
        assert started.data.status in (CampaignStatus.PENDING, CampaignStatus.RUNNING)

        campaign = await runner.wait_for(started.data.id, timeout=5)

        assert campaign.status == CampaignStatus.COMPLETED
        assert campaign.processed_items == 3
        assert campaign.successful_items == 2
        assert campaign.failed_items == 1
        assert campaign.progress.percentage == 100.0
        assert campaign.progress.current_batch == 2
        assert campaign.progress.total_batches == 2

        failed = [r for r in campaign.results if not r.success]
        assert [r.record_id for r in failed] == [ids[1]]
        assert failed[0].code == ErrorCode.INVALID_TRANSITION
        assert failed[0].error == (
            "Transition from DRAFT to APPROVED is not allowed; expected REVIEW"
        )

        assert (await storage.get_record(ids[0])).lifecycle_state == S.APPROVED
        assert (await storage.get_record(ids[1])).lifecycle_state == S.DRAFT

        finished = notifier.of_type(NotificationEventType.CAMPAIGN_FINISHED)
        assert len(finished) == 1
        assert finished[0].data["successful_items"] == 2

    @pytest.mark.asyncio
    async def test_reject_campaign_reports_final_state(
        self, storage: InMemoryStorage, make_record, admin: Identity
    ) -> None:
        ids = await _seed(storage, make_record, [S.REVIEW, S.REVIEW])
        runner = _runner(storage)

        started = await runner.start(
            CampaignAction.REJECT,
            RecordFilter(record_ids=ids),
            admin,
            CampaignOptions(reason="Seasonal range withdrawn"),
        )
        campaign = await runner.wait_for(started.data.id, timeout=5)

        assert campaign.successful_items == 2
        assert {r.new_state for r in campaign.results} == {S.DRAFT}

    @pytest.mark.asyncio
    async def test_get_and_list_campaigns(
        self, storage: InMemoryStorage, make_record, admin: Identity, editor: Identity
    ) -> None:
        ids = await _seed(storage, make_record, [S.REVIEW])
        runner = _runner(storage)
        started = await runner.start(CampaignAction.APPROVE, RecordFilter(record_ids=ids), admin)
        await runner.wait_for(started.data.id, timeout=5)

        fetched = await runner.get_campaign(started.data.id, editor)
        assert fetched.data.status == CampaignStatus.COMPLETED

        listed = await runner.list_campaigns(editor)
        assert [c.id for c in listed.data] == [started.data.id]

        missing = await runner.get_campaign("nope", editor)
        assert missing.code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_finished_task_is_released(
        self, storage: InMemoryStorage, make_record, admin: Identity
    ) -> None:
        """Test that the runner keeps no task handle once a campaign ends."""
        ids = await _seed(storage, make_record, [S.REVIEW, S.REVIEW])
        runner = _runner(storage)

        for record_id in ids:
            started = await runner.start(
                CampaignAction.APPROVE, RecordFilter(record_ids=[record_id]), admin
            )
            campaign = await runner.wait_for(started.data.id, timeout=5)
            assert campaign.status == CampaignStatus.COMPLETED

        assert runner._tasks == {}
        assert (await runner.wait_for(started.data.id)).successful_items == 1

    @pytest.mark.asyncio
    async def test_naive_updated_after_is_utc(
        self, storage: InMemoryStorage, make_record, admin: Identity
    ) -> None:
        """Test that a naive filter bound selects records instead of failing."""
        await _seed(storage, make_record, [S.DRAFT])

        result = await _runner(storage).start(
            CampaignAction.SUBMIT,
            RecordFilter(updated_after=datetime(2020, 1, 1)),
            admin,
            CampaignOptions(assigned_reviewer_id="rev-1", dry_run=True),
        )

        assert result.success is True
        assert result.data.total_items == 1
        assert result.data.results[0].would_be_state == S.REVIEW


class TestDryRun:
    """Test dry runs."""

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(
        self, storage: InMemoryStorage, make_record, admin: Identity
    ) -> None:
        ids = await _seed(storage, make_record, [S.APPROVED, S.REVIEW])
        runner = _runner(storage)

        result = await runner.start(
            CampaignAction.PUBLISH,
            RecordFilter(record_ids=ids),
            admin,
            CampaignOptions(dry_run=True),
        )

        campaign = result.data
        assert campaign.status == CampaignStatus.COMPLETED
        assert campaign.dry_run is True
        assert campaign.results[0].would_be_state == S.PUBLISHED
        assert campaign.results[1].success is False
        assert campaign.results[1].would_be_state is None
        assert (await storage.get_record(ids[0])).lifecycle_state == S.APPROVED

        stored = await runner.get_campaign(campaign.id, admin)
        assert stored.data.successful_items == 1


class TestCancellation:
    """Test cooperative cancellation and record claims."""

    @pytest.mark.asyncio
    async def test_cancel_before_next_batch(
        self, storage: InMemoryStorage, make_record, admin: Identity
    ) -> None:
        ids = await _seed(storage, make_record, [S.REVIEW] * 5)
        runner = _runner(storage, inter_batch_pause_seconds=0.05)

        started = await runner.start(
            CampaignAction.APPROVE,
            RecordFilter(record_ids=ids),
            admin,
            CampaignOptions(batch_size=1),
        )
        cancelled = await runner.cancel(started.data.id, admin)
        assert cancelled.success is True

        campaign = await runner.wait_for(started.data.id, timeout=5)
        assert campaign.status == CampaignStatus.CANCELLED
        assert campaign.processed_items < 5

        again = await runner.cancel(started.data.id, admin)
        assert again.code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, storage: InMemoryStorage, admin: Identity) -> None:
        result = await _runner(storage).cancel("nope", admin)
        assert result.code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_claimed_records_conflict(
        self, storage: InMemoryStorage, make_record, admin: Identity
    ) -> None:
        """Test that a record claimed by a running campaign is not touched by another."""
        ids = await _seed(storage, make_record, [S.REVIEW] * 3)
        runner = _runner(storage, inter_batch_pause_seconds=0.05)

        first = await runner.start(
            CampaignAction.APPROVE,
            RecordFilter(record_ids=ids),
            admin,
            CampaignOptions(batch_size=1),
        )
        second = await runner.start(
            CampaignAction.APPROVE,
            RecordFilter(record_ids=ids),
            admin,
            CampaignOptions(batch_size=3),
        )

        second_done = await runner.wait_for(second.data.id, timeout=5)
        first_done = await runner.wait_for(first.data.id, timeout=5)

        assert {r.code for r in second_done.results} == {ErrorCode.CONFLICT}
        assert second_done.successful_items == 0
        assert first_done.successful_items == 3

    @pytest.mark.asyncio
    async def test_shutdown_stops_active_campaigns(
        self, storage: InMemoryStorage, make_record, admin: Identity
    ) -> None:
        ids = await _seed(storage, make_record, [S.REVIEW] * 4)
        runner = _runner(storage, inter_batch_pause_seconds=0.05)
        started = await runner.start(
            CampaignAction.APPROVE,
            RecordFilter(record_ids=ids),
            admin,
            CampaignOptions(batch_size=1),
        )

        await runner.shutdown()

        campaign = (await runner.get_campaign(started.data.id, admin)).data
        assert campaign.status == CampaignStatus.CANCELLED
