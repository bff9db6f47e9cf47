"""Reviewer directory.

Owns every ``ReviewerProfile``: availability (including scheduled
unavailability windows), workload against a soft capacity, review
metrics, ratings and the two substitution mechanisms, a permanent backup
reviewer and a time-boxed temporary delegation.

Profiles are created on first use with the configured default capacity,
so workload bookkeeping never fails because a reviewer was not
registered up front.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from datetime import datetime

import structlog

from productflow.config import ReviewerConfig
from productflow.domain import (
    AvailabilityWindow,
    ReviewerAvailability,
    ReviewerProfile,
    ReviewerSummary,
    TemporaryDelegation,
    utc_now,
)
from productflow.errors import ErrorCode, OperationResult

logger = structlog.get_logger(__name__)


def compute_quality_score(profile: ReviewerProfile) -> float:
    """Weighted quality score (0-100) from review history.

    Approval rate and average rating weigh 40% each, review volume 20%
    (saturating at 50 reviews). A reviewer with no completed reviews
    keeps whatever score they were given.
    """
    if profile.reviews_completed == 0:
        return profile.quality_score
    approval_score = profile.approval_rate * 100
    rating_score = profile.rating / 5 * 100 if profile.rating > 0 else 0.0
    volume_bonus = min(profile.reviews_completed / 50 * 100, 100.0)
    score = round(approval_score * 0.4 + rating_score * 0.4 + volume_bonus * 0.2)
    return float(min(100, max(0, score)))


class ReviewerDirectory:
    """In-process store and bookkeeping for reviewer profiles.

    Attributes:
        config: Reviewer configuration (default capacity, ratings kept).
    """

    def __init__(
        self,
        config: ReviewerConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config or ReviewerConfig()
        self._clock = clock
        self._profiles: dict[str, ReviewerProfile] = {}
        self._logger = logger.bind(component="ReviewerDirectory")

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def register(self, profile: ReviewerProfile) -> ReviewerProfile:
        """Insert or replace a profile."""
        stored = profile.model_copy(deep=True, update={"updated_at": self._clock()})
        self._profiles[profile.user_id] = stored
        self._logger.info(
            "reviewer_registered",
            user_id=profile.user_id,
            max_assignments=profile.max_assignments,
        )
        return stored.model_copy(deep=True)

    def get_profile(self, user_id: str) -> ReviewerProfile | None:
        profile = self._profiles.get(user_id)
        return profile.model_copy(deep=True) if profile is not None else None

    def list_profiles(self, user_ids: Iterable[str] | None = None) -> list[ReviewerProfile]:
        if user_ids is None:
            ids = sorted(self._profiles)
        else:
            ids = [uid for uid in dict.fromkeys(user_ids) if uid in self._profiles]
        return [self._profiles[uid].model_copy(deep=True) for uid in ids]

    def _ensure(self, user_id: str) -> ReviewerProfile:
        profile = self._profiles.get(user_id)
        if profile is None:
            profile = ReviewerProfile(
                user_id=user_id,
                max_assignments=self.config.default_max_assignments,
                updated_at=self._clock(),
            )
            self._profiles[user_id] = profile
            self._logger.debug("reviewer_profile_created", user_id=user_id)
        return profile

    def _touch(self, profile: ReviewerProfile) -> None:
        profile.updated_at = self._clock()

    # ------------------------------------------------------------------
    # Availability and capacity
    # ------------------------------------------------------------------

    def get_availability(
        self, user_id: str, at: datetime | None = None
    ) -> OperationResult[ReviewerAvailability]:
        """Effective availability, honoring any active scheduled window."""
        profile = self._profiles.get(user_id)
        if profile is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, f"Reviewer {user_id} not found")
        return OperationResult.ok(profile.effective_availability(at or self._clock()))

    def set_availability(
        self,
        user_id: str,
        availability: ReviewerAvailability,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
        note: str | None = None,
    ) -> OperationResult[ReviewerProfile]:
        """Set base availability, or schedule it for a window.

        With no window the base availability changes immediately. With a
        ``start_at``/``end_at`` window a scheduled entry is recorded and
        the base availability is left alone; outside the window the
        reviewer reverts to it.
        """
        if (start_at is None) != (end_at is None):
            return OperationResult.fail(
                ErrorCode.VALIDATION_ERROR, "Both start_at and end_at are required for a window"
            )

        profile = self._ensure(user_id)
        if start_at is not None and end_at is not None:
            if end_at <= start_at:
                return OperationResult.fail(
                    ErrorCode.VALIDATION_ERROR, "Window end_at must be after start_at"
                )
            if availability == ReviewerAvailability.AVAILABLE:
                return OperationResult.fail(
                    ErrorCode.VALIDATION_ERROR,
                    "Scheduled windows describe unavailability; AVAILABLE cannot be scheduled",
                )
            window = AvailabilityWindow(
                id=str(uuid.uuid4()),
                availability=availability,
                start_at=start_at,
                end_at=end_at,
                note=note,
            )
            profile.schedules.append(window)
            self._logger.info(
                "reviewer_unavailability_scheduled",
                user_id=user_id,
                availability=availability.value,
                start_at=start_at.isoformat(),
                end_at=end_at.isoformat(),
            )
        else:
            profile.availability = availability
            self._logger.info(
                "reviewer_availability_changed",
                user_id=user_id,
                availability=availability.value,
            )
        self._touch(profile)
        return OperationResult.ok(profile.model_copy(deep=True))

    def purge_expired_schedules(self, now: datetime | None = None) -> int:
        """Drop scheduled windows that have ended. Returns the number removed."""
        now = now or self._clock()
        removed = 0
        for profile in self._profiles.values():
            keep = [w for w in profile.schedules if w.end_at > now]
            removed += len(profile.schedules) - len(keep)
            profile.schedules = keep
        if removed:
            self._logger.info("reviewer_schedules_purged", count=removed)
        return removed

    def set_max_assignments(self, user_id: str, max_assignments: int) -> OperationResult[ReviewerProfile]:
        if max_assignments < 1:
            return OperationResult.fail(
                ErrorCode.VALIDATION_ERROR, "max_assignments must be at least 1"
            )
        profile = self._ensure(user_id)
        profile.max_assignments = max_assignments
        self._touch(profile)
        return OperationResult.ok(profile.model_copy(deep=True))

    def get_summary(self, user_id: str) -> OperationResult[ReviewerSummary]:
        profile = self._profiles.get(user_id)
        if profile is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, f"Reviewer {user_id} not found")
        now = self._clock()
        return OperationResult.ok(
            ReviewerSummary(
                user_id=profile.user_id,
                availability=profile.effective_availability(now),
                current_assignments=profile.current_assignments,
                max_assignments=profile.max_assignments,
                capacity_percentage=round(profile.capacity_percentage, 1),
                over_capacity=profile.over_capacity,
                reviews_completed=profile.reviews_completed,
                average_review_seconds=profile.average_review_seconds,
                approval_rate=round(profile.approval_rate * 100, 1),
                quality_score=profile.quality_score,
                rating=profile.rating,
                active_delegate_id=profile.active_delegate(now),
                backup_reviewer_id=profile.backup_reviewer_id,
            )
        )

    # ------------------------------------------------------------------
    # Substitution
    # ------------------------------------------------------------------

    def set_backup_reviewer(
        self, user_id: str, backup_reviewer_id: str | None
    ) -> OperationResult[ReviewerProfile]:
        """Set or clear (``None``) the permanent backup reviewer."""
        if backup_reviewer_id == user_id:
            return OperationResult.fail(
                ErrorCode.VALIDATION_ERROR, "A reviewer cannot be their own backup"
            )
        if backup_reviewer_id is not None and backup_reviewer_id not in self._profiles:
            return OperationResult.fail(
                ErrorCode.NOT_FOUND, f"Backup reviewer {backup_reviewer_id} not found"
            )
        profile = self._ensure(user_id)
        profile.backup_reviewer_id = backup_reviewer_id
        self._touch(profile)
        self._logger.info(
            "backup_reviewer_set", user_id=user_id, backup_reviewer_id=backup_reviewer_id
        )
        return OperationResult.ok(profile.model_copy(deep=True))

    def set_temporary_delegation(
        self, user_id: str, delegation: TemporaryDelegation
    ) -> OperationResult[ReviewerProfile]:
        if delegation.delegate_id == user_id:
            return OperationResult.fail(
                ErrorCode.VALIDATION_ERROR, "A reviewer cannot delegate to themselves"
            )
        if delegation.delegate_id not in self._profiles:
            return OperationResult.fail(
                ErrorCode.NOT_FOUND, f"Delegate {delegation.delegate_id} not found"
            )
        profile = self._ensure(user_id)
        profile.temporary_delegation = delegation.model_copy()
        self._touch(profile)
        self._logger.info(
            "temporary_delegation_set",
            user_id=user_id,
            delegate_id=delegation.delegate_id,
            start_at=delegation.start_at.isoformat(),
            end_at=delegation.end_at.isoformat(),
        )
        return OperationResult.ok(profile.model_copy(deep=True))

    def clear_delegation(self, user_id: str) -> OperationResult[ReviewerProfile]:
        profile = self._profiles.get(user_id)
        if profile is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, f"Reviewer {user_id} not found")
        profile.temporary_delegation = None
        self._touch(profile)
        return OperationResult.ok(profile.model_copy(deep=True))

    # ------------------------------------------------------------------
    # Workload and metrics
    # ------------------------------------------------------------------

    def record_assignment(self, user_id: str, at: datetime | None = None) -> ReviewerProfile:
        """Count a new assignment and stamp ``last_assigned_at``."""
        profile = self._ensure(user_id)
        profile.current_assignments += 1
        profile.last_assigned_at = at or self._clock()
        self._touch(profile)
        if profile.over_capacity:
            self._logger.warning(
                "reviewer_over_capacity",
                user_id=user_id,
                current_assignments=profile.current_assignments,
                max_assignments=profile.max_assignments,
            )
        return profile.model_copy(deep=True)

    def release_assignment(self, user_id: str) -> ReviewerProfile:
        """Drop one assignment without counting a completed review."""
        profile = self._ensure(user_id)
        profile.current_assignments = max(0, profile.current_assignments - 1)
        self._touch(profile)
        return profile.model_copy(deep=True)

    def complete_review(
        self,
        user_id: str,
        approved: bool | None,
        duration_seconds: float | None = None,
    ) -> ReviewerProfile:
        """Close one assignment and update review metrics.

        Args:
            user_id: Reviewer whose assignment ended.
            approved: True for approval, False for rejection, None when the
                review ended without a decision.
            duration_seconds: Time the record spent in review.
        """
        profile = self._ensure(user_id)
        profile.current_assignments = max(0, profile.current_assignments - 1)
        if approved is not None:
            profile.reviews_completed += 1
            if approved:
                profile.approvals += 1
            else:
                profile.rejections += 1
            if duration_seconds is not None and duration_seconds >= 0:
                profile.total_review_seconds += duration_seconds
            profile.quality_score = compute_quality_score(profile)
        self._touch(profile)
        return profile.model_copy(deep=True)

    def add_rating(self, user_id: str, rating: int) -> OperationResult[float]:
        """Record a 1-5 rating and return the new average."""
        if rating < 1 or rating > 5:
            return OperationResult.fail(ErrorCode.VALIDATION_ERROR, "Rating must be between 1 and 5")
        profile = self._ensure(user_id)
        profile.ratings.append(rating)
        if len(profile.ratings) > self.config.max_ratings_kept:
            profile.ratings = profile.ratings[-self.config.max_ratings_kept:]
        profile.rating = round(sum(profile.ratings) / len(profile.ratings), 1)
        profile.quality_score = compute_quality_score(profile)
        self._touch(profile)
        return OperationResult.ok(profile.rating)

    def set_quality_score(self, user_id: str, score: float) -> OperationResult[ReviewerProfile]:
        if score < 0 or score > 100:
            return OperationResult.fail(
                ErrorCode.VALIDATION_ERROR, "Quality score must be between 0 and 100"
            )
        profile = self._ensure(user_id)
        profile.quality_score = score
        self._touch(profile)
        return OperationResult.ok(profile.model_copy(deep=True))
