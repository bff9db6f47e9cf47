"""Unit tests for the reviewer directory.

Tests cover:
- Profile registration and auto-creation on first use
- Availability, including scheduled windows
- Capacity, workload and review metrics
- Backup reviewers and temporary delegation
- Ratings and the quality score formula
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from productflow.config import ReviewerConfig
from productflow.domain import ReviewerAvailability, ReviewerProfile, TemporaryDelegation
from productflow.errors import ErrorCode
from productflow.reviewers import ReviewerDirectory, compute_quality_score

A = ReviewerAvailability


@pytest.fixture
def directory(clock) -> ReviewerDirectory:
    return ReviewerDirectory(config=ReviewerConfig(default_max_assignments=4), clock=clock)


class TestProfiles:
    """Test registration and lookup."""

    def test_register_and_get(self, directory: ReviewerDirectory, clock) -> None:
        stored = directory.register(ReviewerProfile(user_id="rev-1", department="Home"))
        assert stored.updated_at == clock.now
        assert directory.get_profile("rev-1").department == "Home"
        assert directory.get_profile("rev-2") is None

    def test_get_profile_returns_copy(self, directory: ReviewerDirectory) -> None:
        directory.register(ReviewerProfile(user_id="rev-1"))
        directory.get_profile("rev-1").current_assignments = 99
        assert directory.get_profile("rev-1").current_assignments == 0

    def test_list_profiles(self, directory: ReviewerDirectory) -> None:
        for uid in ("rev-b", "rev-a", "rev-c"):
            directory.register(ReviewerProfile(user_id=uid))
        assert [p.user_id for p in directory.list_profiles()] == ["rev-a", "rev-b", "rev-c"]
        assert [p.user_id for p in directory.list_profiles(["rev-c", "ghost", "rev-a"])] == [
            "rev-c",
            "rev-a",
        ]

    def test_workload_creates_profile_with_default_capacity(
        self, directory: ReviewerDirectory, clock
    ) -> None:
        """Test that bookkeeping never fails for an unregistered reviewer."""
        profile = directory.record_assignment("rev-new")
        assert profile.max_assignments == 4
        assert profile.current_assignments == 1
        assert profile.last_assigned_at == clock.now


class TestAvailability:
    """Test base availability and scheduled windows."""

    def test_unknown_reviewer(self, directory: ReviewerDirectory) -> None:
        assert directory.get_availability("ghost").code == ErrorCode.NOT_FOUND

    def test_set_base_availability(self, directory: ReviewerDirectory) -> None:
        result = directory.set_availability("rev-1", A.AWAY)
        assert result.success
        assert directory.get_availability("rev-1").data == A.AWAY

    def test_scheduled_window(self, directory: ReviewerDirectory, clock) -> None:
        """Test that a window overrides availability only while active."""
        start = clock.now + timedelta(days=1)
        end = clock.now + timedelta(days=8)
        result = directory.set_availability("rev-1", A.VACATION, start, end, note="Holiday")
        assert result.success
        assert len(result.data.schedules) == 1

        assert directory.get_availability("rev-1").data == A.AVAILABLE
        assert directory.get_availability("rev-1", at=start + timedelta(days=2)).data == A.VACATION
        assert directory.get_availability("rev-1", at=end).data == A.AVAILABLE

    @pytest.mark.parametrize(
        ("availability", "start_offset", "end_offset", "message"),
        [
            (A.AWAY, 1, None, "Both start_at and end_at"),
            (A.AWAY, 2, 1, "end_at must be after start_at"),
            (A.AVAILABLE, 1, 2, "AVAILABLE cannot be scheduled"),
        ],
    )
    def test_invalid_windows(
        self,
        directory: ReviewerDirectory,
        clock,
        availability,
        start_offset,
        end_offset,
        message,
    ) -> None:
        start = clock.now + timedelta(days=start_offset)
        end = clock.now + timedelta(days=end_offset) if end_offset is not None else None
        result = directory.set_availability("rev-1", availability, start, end)
        assert result.code == ErrorCode.VALIDATION_ERROR
        assert message in result.error

    def test_purge_expired_schedules(self, directory: ReviewerDirectory, clock) -> None:
        directory.set_availability(
            "rev-1", A.AWAY, clock.now - timedelta(days=3), clock.now - timedelta(days=1)
        )
        directory.set_availability(
            "rev-1", A.AWAY, clock.now + timedelta(days=1), clock.now + timedelta(days=2)
        )
        assert directory.purge_expired_schedules() == 1
        assert len(directory.get_profile("rev-1").schedules) == 1


class TestWorkload:
    """Test capacity and review metrics."""

    def test_capacity_is_soft(self, directory: ReviewerDirectory) -> None:
        for _ in range(5):
            directory.record_assignment("rev-1")
        summary = directory.get_summary("rev-1").data
        assert summary.current_assignments == 5
        assert summary.over_capacity is True
        assert summary.capacity_percentage == 125.0

    def test_set_max_assignments(self, directory: ReviewerDirectory) -> None:
        assert directory.set_max_assignments("rev-1", 0).code == ErrorCode.VALIDATION_ERROR
        assert directory.set_max_assignments("rev-1", 12).data.max_assignments == 12

    def test_release_never_goes_negative(self, directory: ReviewerDirectory) -> None:
        assert directory.release_assignment("rev-1").current_assignments == 0

    def test_complete_review_metrics(self, directory: ReviewerDirectory) -> None:
        """Test counts, durations and the approval rate percentage."""
        directory.record_assignment("rev-1")
        directory.record_assignment("rev-1")
        directory.record_assignment("rev-1")
        directory.complete_review("rev-1", approved=True, duration_seconds=600)
        directory.complete_review("rev-1", approved=False, duration_seconds=1200)
        directory.complete_review("rev-1", approved=None)

        summary = directory.get_summary("rev-1").data
        assert summary.current_assignments == 0
        assert summary.reviews_completed == 2
        assert summary.average_review_seconds == 900.0
        assert summary.approval_rate == 50.0

    def test_summary_unknown_reviewer(self, directory: ReviewerDirectory) -> None:
        assert directory.get_summary("ghost").code == ErrorCode.NOT_FOUND


class TestSubstitution:
    """Test backup reviewers and temporary delegation."""

    def test_backup_reviewer(self, directory: ReviewerDirectory) -> None:
        directory.register(ReviewerProfile(user_id="rev-1"))
        directory.register(ReviewerProfile(user_id="rev-2"))

        assert directory.set_backup_reviewer("rev-1", "rev-1").code == ErrorCode.VALIDATION_ERROR
        assert directory.set_backup_reviewer("rev-1", "ghost").code == ErrorCode.NOT_FOUND
        assert directory.set_backup_reviewer("rev-1", "rev-2").data.backup_reviewer_id == "rev-2"
        assert directory.set_backup_reviewer("rev-1", None).data.backup_reviewer_id is None

    def test_temporary_delegation(self, directory: ReviewerDirectory, clock) -> None:
        directory.register(ReviewerProfile(user_id="rev-2"))
        delegation = TemporaryDelegation(
            delegate_id="rev-2",
            start_at=clock.now,
            end_at=clock.now + timedelta(days=5),
        )

        result = directory.set_temporary_delegation("rev-1", delegation)

        assert result.success
        assert directory.get_summary("rev-1").data.active_delegate_id == "rev-2"
        assert directory.clear_delegation("rev-1").data.temporary_delegation is None
        assert directory.get_summary("rev-1").data.active_delegate_id is None

    def test_delegation_rules(self, directory: ReviewerDirectory, clock) -> None:
        window = {"start_at": clock.now, "end_at": clock.now + timedelta(days=1)}
        self_delegation = TemporaryDelegation(delegate_id="rev-1", **window)
        unknown = TemporaryDelegation(delegate_id="ghost", **window)

        assert (
            directory.set_temporary_delegation("rev-1", self_delegation).code
            == ErrorCode.VALIDATION_ERROR
        )
        assert directory.set_temporary_delegation("rev-1", unknown).code == ErrorCode.NOT_FOUND
        assert directory.clear_delegation("ghost").code == ErrorCode.NOT_FOUND

    def test_delegation_window_must_be_ordered(self, clock) -> None:
        with pytest.raises(ValueError, match="end_at must be after start_at"):
            TemporaryDelegation(delegate_id="rev-2", start_at=clock.now, end_at=clock.now)


class TestQuality:
    """Test ratings and quality scores."""

    def test_rating_bounds(self, directory: ReviewerDirectory) -> None:
        assert directory.add_rating("rev-1", 0).code == ErrorCode.VALIDATION_ERROR
        assert directory.add_rating("rev-1", 6).code == ErrorCode.VALIDATION_ERROR

    def test_rating_average(self, directory: ReviewerDirectory) -> None:
        directory.add_rating("rev-1", 5)
        directory.add_rating("rev-1", 4)
        assert directory.add_rating("rev-1", 4).data == 4.3

    def test_ratings_kept_are_capped(self, clock) -> None:
        directory = ReviewerDirectory(config=ReviewerConfig(max_ratings_kept=2), clock=clock)
        for rating in (1, 5, 5):
            directory.add_rating("rev-1", rating)
        assert directory.get_profile("rev-1").ratings == [5, 5]
        assert directory.get_profile("rev-1").rating == 5.0

    def test_set_quality_score(self, directory: ReviewerDirectory) -> None:
        assert directory.set_quality_score("rev-1", 101).code == ErrorCode.VALIDATION_ERROR
        assert directory.set_quality_score("rev-1", 77.5).data.quality_score == 77.5

    def test_quality_formula(self) -> None:
        """Test the 40/40/20 weighting of approval rate, rating and volume."""
        profile = ReviewerProfile(
            user_id="rev-1", reviews_completed=25, approvals=20, rejections=5, rating=4.0
        )
        # 80 * 0.4 + 80 * 0.4 + 50 * 0.2
        assert compute_quality_score(profile) == 74.0

    def test_quality_unchanged_without_reviews(self) -> None:
        profile = ReviewerProfile(user_id="rev-1", quality_score=63.0)
        assert compute_quality_score(profile) == 63.0

    def test_completing_reviews_recomputes_quality(self, directory: ReviewerDirectory) -> None:
        directory.record_assignment("rev-1")
        profile = directory.complete_review("rev-1", approved=True)
        # 100 * 0.4 + 0 * 0.4 + 2 * 0.2
        assert profile.quality_score == 40.0
