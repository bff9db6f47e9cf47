"""Reviewer assignment selector.

Given candidate reviewer profiles and a policy, scores every eligible
candidate and picks exactly one. Filtering always precedes scoring: an
empty pool after filtering is a ``NO_ELIGIBLE_REVIEWER`` failure, never a
pick among ineligible reviewers.

Policies (higher score wins):

- WORKLOAD: free capacity, ``max_assignments - current_assignments``.
  Reviewers at or above capacity count as BUSY and are dropped unless the
  caller's ``require_availability`` names BUSY.
- PERFORMANCE: ``quality_score``.
- SPECIALTY: 1 when the requested specialty is listed, otherwise excluded.
- DEPARTMENT: 1 when the department matches, otherwise excluded.
- ROUND_ROBIN: seconds since ``last_assigned_at``; never-assigned reviewers
  score highest.

Ties break by lowest ``current_assignments`` then by ``user_id``. When the
winner has an active temporary delegation the delegate becomes the
assignee and the substitution is reported.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from enum import Enum

import structlog
from pydantic import BaseModel, Field

from productflow.domain import ReviewerAvailability, ReviewerProfile, utc_now
from productflow.errors import ErrorCode, OperationResult

logger = structlog.get_logger(__name__)


class AssignmentPolicy(str, Enum):
    """Scoring policies supported by the selector."""

    WORKLOAD = "WORKLOAD"
    PERFORMANCE = "PERFORMANCE"
    SPECIALTY = "SPECIALTY"
    DEPARTMENT = "DEPARTMENT"
    ROUND_ROBIN = "ROUND_ROBIN"


class AssignmentRequest(BaseModel):
    """Inputs to one reviewer selection.

    Attributes:
        policy: Scoring policy.
        specialty: Required specialty (SPECIALTY policy).
        department: Required department (DEPARTMENT policy).
        pool: Candidate reviewer ids; None means every known reviewer.
        exclude: Reviewer ids never to pick.
        require_availability: Eligible availability states; None uses the
            directory default.
        min_quality_score: Drop candidates scoring below this.
    """

    policy: AssignmentPolicy = AssignmentPolicy.WORKLOAD
    specialty: str | None = None
    department: str | None = None
    pool: list[str] | None = None
    exclude: list[str] = Field(default_factory=list)
    require_availability: list[ReviewerAvailability] | None = None
    min_quality_score: float | None = None


class CandidateScore(BaseModel):
    """Score given to one eligible candidate."""

    user_id: str
    score: float
    current_assignments: int


class AssignmentResult(BaseModel):
    """Outcome of a selection.

    Attributes:
        reviewer_id: Reviewer chosen by the policy.
        assignee_id: Reviewer who actually receives the assignment.
        substituted: True when a delegation replaced ``reviewer_id``.
        delegated_from: Original reviewer when substituted.
        policy: Policy used.
        score: Winning score.
        ranking: Every eligible candidate, best first.
    """

    reviewer_id: str
    assignee_id: str
    substituted: bool = False
    delegated_from: str | None = None
    policy: AssignmentPolicy
    score: float
    ranking: list[CandidateScore] = Field(default_factory=list)


class ReviewerSelector:
    """Scores candidate reviewers and picks one.

    The selector is pure over the profiles it is given; reserving capacity
    for the chosen assignee is the directory's job.
    """

    def __init__(
        self,
        default_require_availability: Iterable[ReviewerAvailability | str] = (
            ReviewerAvailability.AVAILABLE,
        ),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.default_require_availability = frozenset(
            ReviewerAvailability(a) for a in default_require_availability
        )
        self._clock = clock
        self._logger = logger.bind(component="ReviewerSelector")

    def select(
        self,
        request: AssignmentRequest,
        profiles: Iterable[ReviewerProfile],
    ) -> OperationResult[AssignmentResult]:
        """Pick one reviewer from ``profiles`` under ``request.policy``."""
        if request.policy == AssignmentPolicy.SPECIALTY and not request.specialty:
            return OperationResult.fail(
                ErrorCode.VALIDATION_ERROR, "Specialty is required for SPECIALTY assignment"
            )
        if request.policy == AssignmentPolicy.DEPARTMENT and not request.department:
            return OperationResult.fail(
                ErrorCode.VALIDATION_ERROR, "Department is required for DEPARTMENT assignment"
            )

        now = self._clock()
        candidates = self._eligible(request, list(profiles), now)

        ranking: list[CandidateScore] = []
        for profile in candidates:
            score = self._score(request, profile, now)
            if score is None:
                continue
            ranking.append(
                CandidateScore(
                    user_id=profile.user_id,
                    score=score,
                    current_assignments=profile.current_assignments,
                )
            )

        if not ranking:
            self._logger.info(
                "no_eligible_reviewer",
                policy=request.policy.value,
                pool_size=len(request.pool) if request.pool is not None else None,
            )
            return OperationResult.fail(
                ErrorCode.NO_ELIGIBLE_REVIEWER,
                f"No eligible reviewer for {request.policy.value} assignment",
            )

        ranking.sort(key=lambda c: (-c.score, c.current_assignments, c.user_id))
        winner = ranking[0]
        profile_by_id = {p.user_id: p for p in candidates}
        delegate = profile_by_id[winner.user_id].active_delegate(now)

        result = AssignmentResult(
            reviewer_id=winner.user_id,
            assignee_id=delegate or winner.user_id,
            substituted=delegate is not None,
            delegated_from=winner.user_id if delegate else None,
            policy=request.policy,
            score=winner.score,
            ranking=ranking,
        )
        self._logger.info(
            "reviewer_selected",
            policy=request.policy.value,
            reviewer_id=result.reviewer_id,
            assignee_id=result.assignee_id,
            substituted=result.substituted,
            score=result.score,
            candidates=len(ranking),
        )
        return OperationResult.ok(result)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _eligible(
        self,
        request: AssignmentRequest,
        profiles: list[ReviewerProfile],
        now: datetime,
    ) -> list[ReviewerProfile]:
        if request.pool is not None:
            wanted = set(request.pool)
            profiles = [p for p in profiles if p.user_id in wanted]
        excluded = set(request.exclude)
        profiles = [p for p in profiles if p.user_id not in excluded]

        explicit = request.require_availability is not None
        allowed = (
            frozenset(request.require_availability or ())
            if explicit
            else self.default_require_availability
        )

        eligible: list[ReviewerProfile] = []
        for profile in profiles:
            availability = profile.effective_availability(now)
            if availability not in allowed:
                continue
            if (
                request.policy == AssignmentPolicy.WORKLOAD
                and profile.over_capacity
                and ReviewerAvailability.BUSY not in allowed
            ):
                continue
            if (
                request.min_quality_score is not None
                and profile.quality_score < request.min_quality_score
            ):
                continue
            eligible.append(profile)
        return eligible

    def _score(
        self,
        request: AssignmentRequest,
        profile: ReviewerProfile,
        now: datetime,
    ) -> float | None:
        policy = request.policy
        if policy == AssignmentPolicy.WORKLOAD:
            return float(profile.max_assignments - profile.current_assignments)
        if policy == AssignmentPolicy.PERFORMANCE:
            return profile.quality_score
        if policy == AssignmentPolicy.SPECIALTY:
            wanted = (request.specialty or "").lower()
            if wanted in {s.lower() for s in profile.specialties}:
                return 1.0
            return None
        if policy == AssignmentPolicy.DEPARTMENT:
            if (profile.department or "").lower() == (request.department or "").lower():
                return 1.0
            return None
        if policy == AssignmentPolicy.ROUND_ROBIN:
            if profile.last_assigned_at is None:
                return now.timestamp()
            return (now - profile.last_assigned_at).total_seconds()
        raise ValueError(f"Unknown assignment policy: {policy}")
