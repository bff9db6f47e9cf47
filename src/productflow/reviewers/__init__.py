"""Reviewer directory, assignment selection and delegation."""

from productflow.reviewers.delegation import (
    ReassignmentFailure,
    ReassignmentReport,
    ReviewerDelegationService,
)
from productflow.reviewers.directory import ReviewerDirectory, compute_quality_score
from productflow.reviewers.selector import (
    AssignmentPolicy,
    AssignmentRequest,
    AssignmentResult,
    CandidateScore,
    ReviewerSelector,
)

__all__ = [
    "AssignmentPolicy",
    "AssignmentRequest",
    "AssignmentResult",
    "CandidateScore",
    "ReassignmentFailure",
    "ReassignmentReport",
    "ReviewerDelegationService",
    "ReviewerDirectory",
    "ReviewerSelector",
    "compute_quality_score",
]
