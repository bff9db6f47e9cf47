"""Reviewer profile models.

A profile is owned by the reviewer directory. Capacity is a soft limit:
``current_assignments`` may exceed ``max_assignments`` and is then surfaced
as ``over_capacity`` rather than blocked.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from productflow.domain.enums import ReviewerAvailability


class AvailabilityWindow(BaseModel):
    """Scheduled unavailability for a reviewer.

    Attributes:
        id: Window identifier.
        availability: Availability that applies inside the window.
        start_at: Inclusive start.
        end_at: Exclusive end.
        note: Optional note.
    """

    id: str
    availability: ReviewerAvailability
    start_at: datetime
    end_at: datetime
    note: str | None = None

    def is_active(self, at: datetime) -> bool:
        return self.start_at <= at < self.end_at


class TemporaryDelegation(BaseModel):
    """Time-boxed redirection of a reviewer's assignments.

    Attributes:
        delegate_id: Reviewer who receives assignments while active.
        start_at: Start of the window (inclusive).
        end_at: End of the window (inclusive).
        note: Optional note.
    """

    delegate_id: str = Field(..., min_length=1)
    start_at: datetime
    end_at: datetime
    note: str | None = None

    @model_validator(mode="after")
    def _check_window(self) -> "TemporaryDelegation":
        if self.end_at <= self.start_at:
            raise ValueError("Delegation end_at must be after start_at")
        return self

    def is_active(self, at: datetime) -> bool:
        return self.start_at <= at <= self.end_at


class ReviewerProfile(BaseModel):
    """Everything the directory knows about one reviewer.

    Attributes:
        user_id: Reviewer identifier.
        display_name: Optional display name.
        availability: Base availability (scheduled windows override it).
        current_assignments: Records currently assigned for review.
        max_assignments: Soft capacity.
        quality_score: Historical quality score (0-100).
        rating: Average of retained ratings (1-5, 0 when unrated).
        ratings: Most recent ratings, oldest first.
        department: Department the reviewer belongs to.
        specialties: Product specialties the reviewer covers.
        backup_reviewer_id: Permanent substitute.
        temporary_delegation: Time-boxed substitute.
        last_assigned_at: When the reviewer last received an assignment.
        reviews_completed: Number of finished reviews.
        approvals: Reviews that ended in approval.
        rejections: Reviews that ended in rejection.
        total_review_seconds: Sum of review durations.
        schedules: Scheduled unavailability windows.
        updated_at: Last profile modification.
    """

    user_id: str = Field(..., min_length=1)
    display_name: str | None = None
    availability: ReviewerAvailability = ReviewerAvailability.AVAILABLE
    current_assignments: int = Field(default=0, ge=0)
    max_assignments: int = Field(default=10, ge=0)
    quality_score: float = Field(default=0.0, ge=0.0, le=100.0)
    rating: float = Field(default=0.0, ge=0.0, le=5.0)
    ratings: list[int] = Field(default_factory=list)
    department: str | None = None
    specialties: list[str] = Field(default_factory=list)
    backup_reviewer_id: str | None = None
    temporary_delegation: TemporaryDelegation | None = None
    last_assigned_at: datetime | None = None
    reviews_completed: int = 0
    approvals: int = 0
    rejections: int = 0
    total_review_seconds: float = 0.0
    schedules: list[AvailabilityWindow] = Field(default_factory=list)
    updated_at: datetime | None = None

    @property
    def over_capacity(self) -> bool:
        return self.current_assignments >= self.max_assignments

    @property
    def capacity_percentage(self) -> float:
        if self.max_assignments <= 0:
            return 100.0
        return self.current_assignments / self.max_assignments * 100

    @property
    def approval_rate(self) -> float:
        decided = self.approvals + self.rejections
        return self.approvals / decided if decided else 0.0

    @property
    def average_review_seconds(self) -> float:
        if not self.reviews_completed:
            return 0.0
        return self.total_review_seconds / self.reviews_completed

    def effective_availability(self, at: datetime) -> ReviewerAvailability:
        """Availability at ``at``, honoring any active scheduled window."""
        for window in self.schedules:
            if window.is_active(at):
                return window.availability
        return self.availability

    def active_delegate(self, at: datetime) -> str | None:
        """Delegate id if a temporary delegation is active at ``at``."""
        delegation = self.temporary_delegation
        if delegation is not None and delegation.is_active(at):
            return delegation.delegate_id
        return None


class ReviewerSummary(BaseModel):
    """Read-only summary of a reviewer's load and quality."""

    user_id: str
    availability: ReviewerAvailability
    current_assignments: int
    max_assignments: int
    capacity_percentage: float
    over_capacity: bool
    reviews_completed: int
    average_review_seconds: float
    approval_rate: float
    quality_score: float
    rating: float
    active_delegate_id: str | None = None
    backup_reviewer_id: str | None = None
