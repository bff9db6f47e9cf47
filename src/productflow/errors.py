"""Error kinds and structured operation results for Productflow.

Nothing in the engine raises past its public surface: every operation
returns an ``OperationResult`` (or the richer ``TransitionResult``) whose
``errors`` list carries every problem found, so a caller can render all
of them at once.

The only exception type that crosses a collaborator boundary is
``StorageError``, raised by storage implementations and converted into a
``STORAGE_ERROR`` result by the engine.
"""

from __future__ import annotations

from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Kinds of failure an engine operation can report.

    Attributes:
        VALIDATION_ERROR: Bad or missing input shape; nothing was mutated.
        PERMISSION_DENIED: Role or capability insufficient.
        INVALID_TRANSITION: No rule exists for the requested from/to pair.
        MISSING_PRECONDITION: A transition precondition is unmet.
        CONFLICT: Record locked by another actor or claimed by another campaign.
        NOT_FOUND: Record, campaign, or reviewer unknown.
        CAPACITY_EXCEEDED: Bulk record set larger than the configured ceiling.
        NO_ELIGIBLE_REVIEWER: Empty candidate pool after filtering.
        STORAGE_ERROR: Storage collaborator failure, surfaced as-is.
        UNAUTHENTICATED: No identity supplied with the call.
    """

    VALIDATION_ERROR = "VALIDATION_ERROR"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    MISSING_PRECONDITION = "MISSING_PRECONDITION"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    NO_ELIGIBLE_REVIEWER = "NO_ELIGIBLE_REVIEWER"
    STORAGE_ERROR = "STORAGE_ERROR"
    UNAUTHENTICATED = "UNAUTHENTICATED"


class ErrorDetail(BaseModel):
    """A single coded problem.

    Attributes:
        code: Kind of failure.
        message: Human-readable description.
    """

    code: ErrorCode
    message: str


class OperationResult(BaseModel, Generic[T]):
    """Uniform ``{success, error/errors, data?}`` envelope.

    Attributes:
        success: Whether the operation completed.
        data: Payload on success (and for some partial results).
        error: All error messages joined with ``"; "``.
        code: Code of the first error, if any.
        errors: Every problem found.
    """

    success: bool
    data: T | None = None
    error: str | None = None
    code: ErrorCode | None = None
    errors: list[ErrorDetail] = Field(default_factory=list)

    @classmethod
    def ok(cls, data: T | None = None) -> "OperationResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        code: ErrorCode,
        message: str,
        errors: list[ErrorDetail] | None = None,
        data: T | None = None,
    ) -> "OperationResult[T]":
        details = errors if errors else [ErrorDetail(code=code, message=message)]
        return cls(success=False, data=data, error=message, code=code, errors=details)


class StorageError(Exception):
    """Raised by storage collaborators when a read or write fails.

    Attributes:
        operation: Name of the collaborator operation that failed.
    """

    def __init__(self, message: str, operation: str | None = None):
        self.operation = operation
        if operation:
            message = f"{operation}: {message}"
        super().__init__(message)
