"""Reviewer delegation and reassignment.

Moves in-review records from one reviewer to another, writing one
``reviewer_reassigned`` audit entry per record. Used directly by admins
and by ``delegate_during_absence`` when a reviewer becomes unavailable.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import structlog
from pydantic import BaseModel, Field

from productflow.domain import (
    AuditEntry,
    FieldChange,
    Identity,
    LifecycleState,
    ReviewerAvailability,
    utc_now,
)
from productflow.errors import ErrorCode, OperationResult, StorageError
from productflow.reviewers.directory import ReviewerDirectory
from productflow.storage.base import RecordFilter, StorageCollaborator

logger = structlog.get_logger(__name__)


class ReassignmentFailure(BaseModel):
    """One record that could not be reassigned."""

    record_id: str
    error: str


class ReassignmentReport(BaseModel):
    """Outcome of a reassignment run.

    Attributes:
        from_reviewer_id: Reviewer the records were taken from.
        to_reviewer_id: Reviewer the records were given to.
        reassigned_count: Records moved successfully.
        reassigned_ids: Ids of the records moved.
        failures: Records that could not be moved.
    """

    from_reviewer_id: str
    to_reviewer_id: str
    reassigned_count: int = 0
    reassigned_ids: list[str] = Field(default_factory=list)
    failures: list[ReassignmentFailure] = Field(default_factory=list)


class ReviewerDelegationService:
    """Reassigns review work between reviewers.

    Attributes:
        directory: Reviewer directory kept in step with reassignments.
        storage: Storage collaborator holding records and audit entries.
    """

    def __init__(
        self,
        directory: ReviewerDirectory,
        storage: StorageCollaborator,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.directory = directory
        self.storage = storage
        self._clock = clock
        self._logger = logger.bind(component="ReviewerDelegationService")

    async def reassign_reviews(
        self,
        from_reviewer_id: str,
        to_reviewer_id: str,
        identity: Identity,
        reason: str | None = None,
    ) -> OperationResult[ReassignmentReport]:
        """Move every in-review record from one reviewer to another.

        Per-record failures are collected; they never stop the run.
        """
        if from_reviewer_id == to_reviewer_id:
            return OperationResult.fail(
                ErrorCode.VALIDATION_ERROR, "Source and target reviewer must differ"
            )

        try:
            records = await self.storage.query_records(
                RecordFilter(
                    states=[LifecycleState.REVIEW],
                    assigned_reviewer_id=from_reviewer_id,
                )
            )
        except StorageError as exc:
            return OperationResult.fail(ErrorCode.STORAGE_ERROR, str(exc))

        report = ReassignmentReport(
            from_reviewer_id=from_reviewer_id, to_reviewer_id=to_reviewer_id
        )
        for record in records:
            now = self._clock()
            updated = record.model_copy(
                deep=True,
                update={"assigned_reviewer_id": to_reviewer_id, "updated_at": now},
            )
            entry = AuditEntry.create(
                record_id=record.id,
                actor_id=identity.actor_id,
                actor_role=identity.actor_role.value,
                action="reviewer_reassigned",
                timestamp=now,
                field_changes=[
                    FieldChange.between("assigned_reviewer_id", from_reviewer_id, to_reviewer_id)
                ],
                reason=reason,
                resulting_state=record.lifecycle_state,
                metadata={
                    "from_reviewer_id": from_reviewer_id,
                    "to_reviewer_id": to_reviewer_id,
                },
            )
            try:
                await self.storage.save_transition(updated, entry)
            except StorageError as exc:
                report.failures.append(ReassignmentFailure(record_id=record.id, error=str(exc)))
                continue

            self.directory.release_assignment(from_reviewer_id)
            self.directory.record_assignment(to_reviewer_id, at=now)
            report.reassigned_ids.append(record.id)
            report.reassigned_count += 1

        self._logger.info(
            "reviews_reassigned",
            from_reviewer_id=from_reviewer_id,
            to_reviewer_id=to_reviewer_id,
            reassigned=report.reassigned_count,
            failed=len(report.failures),
        )
        return OperationResult.ok(report)

    async def delegate_during_absence(
        self,
        reviewer_id: str,
        identity: Identity,
    ) -> OperationResult[ReassignmentReport]:
        """Hand an absent reviewer's work to their delegate or backup.

        The active temporary delegate wins over the permanent backup.
        """
        profile = self.directory.get_profile(reviewer_id)
        if profile is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, f"Reviewer {reviewer_id} not found")

        now = self._clock()
        if profile.effective_availability(now) == ReviewerAvailability.AVAILABLE:
            return OperationResult.fail(
                ErrorCode.VALIDATION_ERROR, f"Reviewer {reviewer_id} is available"
            )

        target = profile.active_delegate(now) or profile.backup_reviewer_id
        if target is None:
            return OperationResult.fail(
                ErrorCode.NO_ELIGIBLE_REVIEWER,
                f"No delegate configured for reviewer {reviewer_id}",
            )

        return await self.reassign_reviews(
            reviewer_id,
            target,
            identity,
            reason=f"Reviewer {reviewer_id} unavailable",
        )
