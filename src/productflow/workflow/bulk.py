"""Bulk campaign runner for Productflow.

Applies one lifecycle action to many records as a background job:

- ``start()`` resolves the record set, enforces the item ceiling, and
  either answers a dry run immediately or launches the batch loop with
  ``asyncio.create_task`` and returns the campaign id without waiting.
- The loop processes fixed-size batches sequentially. Each record's
  failure is caught and recorded on its own item; it never aborts the
  campaign.
- Cancellation is cooperative and checked between batches only.
- Counters and progress are replaced together under a lock after every
  batch, so status polls always see a consistent snapshot.

Campaigns live in an injected ``CampaignStore``; ``InMemoryCampaignStore``
is the default.
"""

from __future__ import annotations

import asyncio
import math
import uuid
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Protocol, runtime_checkable

import structlog
from pydantic import BaseModel, Field

from productflow.config import BulkConfig
from productflow.domain import (
    Identity,
    LifecycleState,
    ProductRecord,
    WorkflowAction,
    utc_now,
)
from productflow.errors import ErrorCode, OperationResult, StorageError
from productflow.notifications.base import (
    NotificationEvent,
    NotificationEventType,
    Notifier,
)
from productflow.storage.base import RecordFilter, StorageCollaborator
from productflow.workflow.executor import TransitionExecutor
from productflow.workflow.models import TransitionRequest
from productflow.workflow.permissions import PermissionGate

logger = structlog.get_logger(__name__)


class CampaignAction(str, Enum):
    """Actions a bulk campaign can apply."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    PUBLISH = "publish"
    UNPUBLISH = "unpublish"


CAMPAIGN_TRANSITIONS: dict[CampaignAction, tuple[LifecycleState, LifecycleState]] = {
    CampaignAction.SUBMIT: (LifecycleState.DRAFT, LifecycleState.REVIEW),
    CampaignAction.APPROVE: (LifecycleState.REVIEW, LifecycleState.APPROVED),
    CampaignAction.REJECT: (LifecycleState.REVIEW, LifecycleState.REJECTED),
    CampaignAction.PUBLISH: (LifecycleState.APPROVED, LifecycleState.PUBLISHED),
    CampaignAction.UNPUBLISH: (LifecycleState.PUBLISHED, LifecycleState.DRAFT),
}


class CampaignStatus(str, Enum):
    """Campaign lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {CampaignStatus.COMPLETED, CampaignStatus.FAILED, CampaignStatus.CANCELLED}
)


class CampaignOptions(BaseModel):
    """Caller-supplied campaign options.

    Attributes:
        batch_size: Records per batch; defaults to the configured size.
        dry_run: Report would-be states without executing anything.
        skip_validation: Skip the per-item state machine pre-check. The
            executor still validates and consults the permission gate.
        reason: Reason applied to every transition (required for reject).
        comment: Comment applied to every transition.
        assigned_reviewer_id: Reviewer assigned on submit.
    """

    batch_size: int | None = Field(default=None, ge=1)
    dry_run: bool = False
    skip_validation: bool = False
    reason: str | None = None
    comment: str | None = None
    assigned_reviewer_id: str | None = None


class CampaignItemResult(BaseModel):
    """Outcome for one record of a campaign.

    Attributes:
        record_id: Record processed.
        success: Whether the record transitioned (or would, on a dry run).
        previous_state: State before processing.
        new_state: State after processing (real runs).
        would_be_state: Target state a dry run would reach, or None.
        error: Joined error text on failure.
        code: Code of the first error.
    """

    record_id: str
    success: bool
    previous_state: LifecycleState | None = None
    new_state: LifecycleState | None = None
    would_be_state: LifecycleState | None = None
    error: str | None = None
    code: ErrorCode | None = None


class CampaignProgress(BaseModel):
    """Progress snapshot updated after every batch."""

    percentage: float = 0.0
    current_batch: int = 0
    total_batches: int = 0


class BulkCampaign(BaseModel):
    """One batched application of an action across many records."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: CampaignAction
    filter_criteria: RecordFilter
    batch_size: int
    dry_run: bool = False
    skip_validation: bool = False
    reason: str | None = None
    comment: str | None = None
    assigned_reviewer_id: str | None = None
    status: CampaignStatus = CampaignStatus.PENDING
    total_items: int = 0
    processed_items: int = 0
    successful_items: int = 0
    failed_items: int = 0
    results: list[CampaignItemResult] = Field(default_factory=list)
    progress: CampaignProgress = Field(default_factory=CampaignProgress)
    created_by: str
    created_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancel_requested: bool = False
    error: str | None = None


@runtime_checkable
class CampaignStore(Protocol):
    """Persistence for campaigns."""

    async def save(self, campaign: BulkCampaign) -> None:
        ...

    async def get(self, campaign_id: str) -> BulkCampaign | None:
        ...

    async def list(self) -> list[BulkCampaign]:
        ...


class InMemoryCampaignStore:
    """Dictionary-backed ``CampaignStore``."""

    def __init__(self) -> None:
        self._campaigns: dict[str, BulkCampaign] = {}

    async def save(self, campaign: BulkCampaign) -> None:
        self._campaigns[campaign.id] = campaign.model_copy(deep=True)

    async def get(self, campaign_id: str) -> BulkCampaign | None:
        campaign = self._campaigns.get(campaign_id)
        return campaign.model_copy(deep=True) if campaign is not None else None

    async def list(self) -> list[BulkCampaign]:
        return [
            c.model_copy(deep=True)
            for c in sorted(self._campaigns.values(), key=lambda c: c.created_at, reverse=True)
        ]


class BulkCampaignRunner:
    """Starts, tracks and cancels bulk campaigns.

    Attributes:
        executor: Transition executor called once per record.
        storage: Storage collaborator used to resolve the record set.
        store: Campaign store.
        config: Bulk configuration (ceiling, batch sizes, pause).
        gate: Permission gate for campaign operations.
        notifier: Optional notifier told when a campaign finishes.
    """

    def __init__(
        self,
        executor: TransitionExecutor,
        storage: StorageCollaborator,
        store: CampaignStore | None = None,
        config: BulkConfig | None = None,
        gate: PermissionGate | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.executor = executor
        self.storage = storage
        self.store = store or InMemoryCampaignStore()
        self.config = config or BulkConfig()
        self.gate = gate or PermissionGate()
        self.notifier = notifier
        self._clock = clock
        self._lock = asyncio.Lock()
        self._active: dict[str, BulkCampaign] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._claims: dict[str, str] = {}
        self._logger = logger.bind(component="BulkCampaignRunner")

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start(
        self,
        action: CampaignAction,
        filter_criteria: RecordFilter,
        identity: Identity | None,
        options: CampaignOptions | None = None,
    ) -> OperationResult[BulkCampaign]:
        """Start a campaign, or answer a dry run.

        Returns:
            OperationResult carrying the campaign snapshot. Real runs come
            back ``pending`` while the batch loop proceeds in the background.
        """
        options = options or CampaignOptions()
        denied = self._authorize(identity, WorkflowAction.BULK_OPERATIONS)
        if denied is not None:
            return denied
        assert identity is not None

        batch_size = options.batch_size or self.config.default_batch_size
        if batch_size > self.config.max_batch_size:
            return OperationResult.fail(
                ErrorCode.VALIDATION_ERROR,
                f"Batch size {batch_size} exceeds maximum of {self.config.max_batch_size}",
            )
        if action == CampaignAction.SUBMIT and not options.assigned_reviewer_id:
            return OperationResult.fail(
                ErrorCode.VALIDATION_ERROR, "Submit campaigns require assigned_reviewer_id"
            )
        if action == CampaignAction.REJECT and not (options.reason and options.reason.strip()):
            return OperationResult.fail(
                ErrorCode.VALIDATION_ERROR, "Reject campaigns require a reason"
            )

        try:
            records = await self.storage.query_records(
                filter_criteria, limit=self.config.max_items + 1
            )
        except StorageError as exc:
            return OperationResult.fail(ErrorCode.STORAGE_ERROR, str(exc))

        if not records:
            return OperationResult.fail(
                ErrorCode.NOT_FOUND, "No matching records found for the given criteria"
            )
        if len(records) > self.config.max_items:
            self._logger.warning(
                "campaign_capacity_exceeded",
                action=action.value,
                max_items=self.config.max_items,
            )
            return OperationResult.fail(
                ErrorCode.CAPACITY_EXCEEDED,
                f"Record set exceeds maximum limit of {self.config.max_items}",
            )

        campaign = BulkCampaign(
            action=action,
            filter_criteria=filter_criteria,
            batch_size=batch_size,
            dry_run=options.dry_run,
            skip_validation=options.skip_validation,
            reason=options.reason,
            comment=options.comment,
            assigned_reviewer_id=options.assigned_reviewer_id,
            total_items=len(records),
            created_by=identity.actor_id,
            created_at=self._clock(),
            progress=CampaignProgress(total_batches=math.ceil(len(records) / batch_size)),
        )

        if options.dry_run:
            return await self._dry_run(campaign, records, identity)

        async with self._lock:
            self._active[campaign.id] = campaign
            for record in records:
                self._claims.setdefault(record.id, campaign.id)
        await self.store.save(campaign)

        self._logger.info(
            "campaign_started",
            campaign_id=campaign.id,
            action=action.value,
            total_items=campaign.total_items,
            batch_size=batch_size,
            actor_id=identity.actor_id,
        )
        task = asyncio.create_task(
            self._run(campaign.id, records, identity),
            name=f"campaign-{campaign.id}",
        )
        self._tasks[campaign.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(campaign.id, None))
        return OperationResult.ok(await self._snapshot(campaign.id))

    async def get_campaign(
        self, campaign_id: str, identity: Identity | None
    ) -> OperationResult[BulkCampaign]:
        """Return a consistent snapshot of a campaign."""
        denied = self._authorize(identity, WorkflowAction.VIEW_BULK_OPERATIONS)
        if denied is not None:
            return denied
        campaign = await self._snapshot(campaign_id)
        if campaign is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, f"Campaign {campaign_id} not found")
        return OperationResult.ok(campaign)

    async def list_campaigns(
        self, identity: Identity | None
    ) -> OperationResult[list[BulkCampaign]]:
        denied = self._authorize(identity, WorkflowAction.VIEW_BULK_OPERATIONS)
        if denied is not None:
            return denied
        stored = {c.id: c for c in await self.store.list()}
        async with self._lock:
            for campaign_id, live in self._active.items():
                stored[campaign_id] = live.model_copy(deep=True)
        campaigns = sorted(stored.values(), key=lambda c: c.created_at, reverse=True)
        return OperationResult.ok(campaigns)

    async def cancel(
        self, campaign_id: str, identity: Identity | None
    ) -> OperationResult[BulkCampaign]:
        """Request cooperative cancellation; honored before the next batch."""
        denied = self._authorize(identity, WorkflowAction.CANCEL_BULK_OPERATIONS)
        if denied is not None:
            return denied

        async with self._lock:
            campaign = self._active.get(campaign_id)
            if campaign is not None:
                campaign.cancel_requested = True

        if campaign is None:
            if await self.store.get(campaign_id) is None:
                return OperationResult.fail(
                    ErrorCode.NOT_FOUND, f"Campaign {campaign_id} not found"
                )
            return OperationResult.fail(
                ErrorCode.VALIDATION_ERROR, f"Campaign {campaign_id} has already finished"
            )

        self._logger.info(
            "campaign_cancel_requested",
            campaign_id=campaign_id,
            actor_id=identity.actor_id if identity else None,
        )
        return OperationResult.ok(await self._snapshot(campaign_id))

    async def wait_for(
        self, campaign_id: str, timeout: float | None = None
    ) -> BulkCampaign | None:
        """Wait for a campaign's loop to finish and return its final snapshot."""
        task = self._tasks.get(campaign_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return await self._snapshot(campaign_id)

    async def shutdown(self) -> None:
        """Request cancellation of every active campaign and wait for them."""
        async with self._lock:
            for campaign in self._active.values():
                campaign.cancel_requested = True
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Batch loop
    # ------------------------------------------------------------------

    async def _run(
        self,
        campaign_id: str,
        records: list[ProductRecord],
        identity: Identity,
    ) -> None:
        async with self._lock:
            campaign = self._active[campaign_id]
            campaign.status = CampaignStatus.RUNNING
            campaign.started_at = self._clock()
            batch_size = campaign.batch_size
            total_batches = campaign.progress.total_batches

        try:
            for batch_index in range(total_batches):
                if campaign.cancel_requested:
                    async with self._lock:
                        campaign.status = CampaignStatus.CANCELLED
                    self._logger.info(
                        "campaign_cancelled",
                        campaign_id=campaign_id,
                        processed_items=campaign.processed_items,
                    )
                    break

                batch = records[batch_index * batch_size:(batch_index + 1) * batch_size]
                items: list[CampaignItemResult] = []
                for record in batch:
                    try:
                        items.append(await self._process_item(campaign, record, identity))
                    except Exception as exc:
                        self._logger.exception(
                            "campaign_item_error",
                            campaign_id=campaign_id,
                            record_id=record.id,
                        )
                        items.append(
                            CampaignItemResult(
                                record_id=record.id,
                                success=False,
                                previous_state=record.lifecycle_state,
                                error=str(exc),
                            )
                        )

                await self._record_batch(campaign, items, batch_index + 1, total_batches)
                self._logger.info(
                    "campaign_batch_processed",
                    campaign_id=campaign_id,
                    batch=batch_index + 1,
                    total_batches=total_batches,
                    succeeded=sum(1 for i in items if i.success),
                    failed=sum(1 for i in items if not i.success),
                )
                await self.store.save(await self._snapshot(campaign_id))

                if batch_index + 1 < total_batches and self.config.inter_batch_pause_seconds:
                    await asyncio.sleep(self.config.inter_batch_pause_seconds)
            else:
                async with self._lock:
                    campaign.status = CampaignStatus.COMPLETED
        except Exception as exc:
            self._logger.exception("campaign_failed", campaign_id=campaign_id)
            async with self._lock:
                campaign.status = CampaignStatus.FAILED
                campaign.error = str(exc)
        finally:
            await self._finish(campaign, identity)

    async def _process_item(
        self,
        campaign: BulkCampaign,
        record: ProductRecord,
        identity: Identity,
    ) -> CampaignItemResult:
        owner = self._claims.get(record.id)
        if owner is not None and owner != campaign.id:
            return CampaignItemResult(
                record_id=record.id,
                success=False,
                previous_state=record.lifecycle_state,
                error=f"Record {record.id} is claimed by campaign {owner}",
                code=ErrorCode.CONFLICT,
            )

        source, target = CAMPAIGN_TRANSITIONS[campaign.action]
        current = await self.storage.get_record(record.id)
        if current is None:
            return CampaignItemResult(
                record_id=record.id,
                success=False,
                error=f"Record {record.id} not found",
                code=ErrorCode.NOT_FOUND,
            )
        if current.lifecycle_state != source:
            return self._wrong_state(current, source, target)

        request = self._request_for(campaign, current, target, identity)
        if not campaign.skip_validation:
            outcome = self.executor.state_machine.validate_transition(request, current)
            if not outcome.is_valid:
                return CampaignItemResult(
                    record_id=current.id,
                    success=False,
                    previous_state=current.lifecycle_state,
                    error="; ".join(outcome.error_messages),
                    code=outcome.errors[0].code,
                )

        result = await self.executor.execute(request, current_record=current)
        if not result.success:
            return CampaignItemResult(
                record_id=current.id,
                success=False,
                previous_state=current.lifecycle_state,
                error=result.error,
                code=result.code,
            )
        final = result.record.lifecycle_state if result.record else result.new_state
        return CampaignItemResult(
            record_id=current.id,
            success=True,
            previous_state=current.lifecycle_state,
            new_state=final,
        )

    async def _record_batch(
        self,
        campaign: BulkCampaign,
        items: list[CampaignItemResult],
        current_batch: int,
        total_batches: int,
    ) -> None:
        succeeded = sum(1 for i in items if i.success)
        async with self._lock:
            processed = campaign.processed_items + len(items)
            campaign.results = [*campaign.results, *items]
            campaign.processed_items = processed
            campaign.successful_items += succeeded
            campaign.failed_items += len(items) - succeeded
            campaign.progress = CampaignProgress(
                percentage=round(processed / campaign.total_items * 100, 1),
                current_batch=current_batch,
                total_batches=total_batches,
            )

    async def _finish(self, campaign: BulkCampaign, identity: Identity) -> None:
        async with self._lock:
            campaign.completed_at = self._clock()
            for record_id in [rid for rid, cid in self._claims.items() if cid == campaign.id]:
                del self._claims[record_id]
            snapshot = campaign.model_copy(deep=True)
            del self._active[campaign.id]

        try:
            await self.store.save(snapshot)
        except Exception as exc:
            self._logger.error(
                "campaign_save_failed", campaign_id=campaign.id, error=str(exc)
            )

        self._logger.info(
            "campaign_finished",
            campaign_id=campaign.id,
            status=snapshot.status.value,
            processed_items=snapshot.processed_items,
            successful_items=snapshot.successful_items,
            failed_items=snapshot.failed_items,
        )
        if self.notifier is not None:
            try:
                await self.notifier.notify(
                    NotificationEvent(
                        event_type=NotificationEventType.CAMPAIGN_FINISHED,
                        timestamp=snapshot.completed_at or self._clock(),
                        actor_id=identity.actor_id,
                        campaign_id=snapshot.id,
                        action=snapshot.action.value,
                        data={
                            "status": snapshot.status.value,
                            "successful_items": snapshot.successful_items,
                            "failed_items": snapshot.failed_items,
                        },
                    )
                )
            except Exception as exc:
                self._logger.warning(
                    "campaign_notification_failed", campaign_id=campaign.id, error=str(exc)
                )

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------

    async def _dry_run(
        self,
        campaign: BulkCampaign,
        records: list[ProductRecord],
        identity: Identity,
    ) -> OperationResult[BulkCampaign]:
        source, target = CAMPAIGN_TRANSITIONS[campaign.action]
        items: list[CampaignItemResult] = []
        for record in records:
            if record.lifecycle_state != source:
                items.append(self._wrong_state(record, source, target))
                continue
            if not campaign.skip_validation:
                request = self._request_for(campaign, record, target, identity)
                outcome = self.executor.state_machine.validate_transition(request, record)
                if not outcome.is_valid:
                    items.append(
                        CampaignItemResult(
                            record_id=record.id,
                            success=False,
                            previous_state=record.lifecycle_state,
                            error="; ".join(outcome.error_messages),
                            code=outcome.errors[0].code,
                        )
                    )
                    continue
            items.append(
                CampaignItemResult(
                    record_id=record.id,
                    success=True,
                    previous_state=record.lifecycle_state,
                    would_be_state=target,
                )
            )

        succeeded = sum(1 for i in items if i.success)
        now = self._clock()
        campaign.results = items
        campaign.processed_items = len(items)
        campaign.successful_items = succeeded
        campaign.failed_items = len(items) - succeeded
        campaign.status = CampaignStatus.COMPLETED
        campaign.started_at = now
        campaign.completed_at = now
        campaign.progress = CampaignProgress(
            percentage=100.0,
            current_batch=campaign.progress.total_batches,
            total_batches=campaign.progress.total_batches,
        )
        await self.store.save(campaign)
        self._logger.info(
            "campaign_dry_run",
            campaign_id=campaign.id,
            action=campaign.action.value,
            would_succeed=succeeded,
            would_fail=campaign.failed_items,
        )
        return OperationResult.ok(campaign.model_copy(deep=True))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _authorize(
        self, identity: Identity | None, action: WorkflowAction
    ) -> OperationResult | None:
        if identity is None:
            return OperationResult.fail(ErrorCode.UNAUTHENTICATED, "Actor identity is required")
        decision = self.gate.check(identity.actor_role, action)
        if not decision.allowed:
            return OperationResult.fail(
                ErrorCode.PERMISSION_DENIED, decision.reason or "Permission denied"
            )
        return None

    async def _snapshot(self, campaign_id: str) -> BulkCampaign | None:
        async with self._lock:
            live = self._active.get(campaign_id)
            if live is not None:
                return live.model_copy(deep=True)
        return await self.store.get(campaign_id)

    @staticmethod
    def _request_for(
        campaign: BulkCampaign,
        record: ProductRecord,
        target: LifecycleState,
        identity: Identity,
    ) -> TransitionRequest:
        return TransitionRequest(
            record_id=record.id,
            to_state=target,
            identity=identity,
            reason=campaign.reason,
            comment=campaign.comment,
            assigned_reviewer_id=(
                campaign.assigned_reviewer_id if target == LifecycleState.REVIEW else None
            ),
            metadata={"campaign_id": campaign.id, "bulk_action": campaign.action.value},
        )

    @staticmethod
    def _wrong_state(
        record: ProductRecord, source: LifecycleState, target: LifecycleState
    ) -> CampaignItemResult:
        return CampaignItemResult(
            record_id=record.id,
            success=False,
            previous_state=record.lifecycle_state,
            would_be_state=None,
            error=(
                f"Transition from {record.lifecycle_state.value} to {target.value} "
                f"is not allowed; expected {source.value}"
            ),
            code=ErrorCode.INVALID_TRANSITION,
        )
