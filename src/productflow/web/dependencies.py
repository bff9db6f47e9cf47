"""Shared FastAPI dependencies and result-to-HTTP mapping.

The host authenticates callers upstream; the acting identity arrives in
``X-Actor-*`` headers. A request without ``X-Actor-Id`` is passed to the
engine with no identity, which reports ``UNAUTHENTICATED`` (HTTP 401).
"""

from __future__ import annotations

from typing import Any, TypeVar

from fastapi import Header, HTTPException, Request

from productflow.domain import Identity, Role
from productflow.engine import WorkflowEngine
from productflow.errors import ErrorCode, ErrorDetail, OperationResult
from productflow.logging import bind_actor_context
from productflow.workflow import TransitionResult

T = TypeVar("T")

STATUS_CODES: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.NO_ELIGIBLE_REVIEWER: 409,
    ErrorCode.CAPACITY_EXCEEDED: 413,
    ErrorCode.INVALID_TRANSITION: 422,
    ErrorCode.MISSING_PRECONDITION: 422,
    ErrorCode.STORAGE_ERROR: 503,
}


def get_workflow_engine(request: Request) -> WorkflowEngine:
    """Return the engine stored on app state by the lifespan."""
    return request.app.state.workflow_engine


def get_identity(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
    x_actor_name: str | None = Header(default=None),
    x_actor_email: str | None = Header(default=None),
) -> Identity | None:
    """Build the caller identity from request headers.

    Raises:
        HTTPException: 400 when the role header names an unknown role.
    """
    if not x_actor_id:
        return None
    try:
        role = Role((x_actor_role or Role.VIEWER.value).lower())
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail={
                "code": ErrorCode.VALIDATION_ERROR.value,
                "error": f"Unknown role: {x_actor_role}",
            },
        )
    bind_actor_context(x_actor_id)
    return Identity(
        actor_id=x_actor_id,
        actor_role=role,
        actor_name=x_actor_name,
        actor_email=x_actor_email,
    )


def _error_detail(
    code: ErrorCode | None,
    error: str | None,
    errors: list[ErrorDetail],
    **extra: Any,
) -> dict[str, Any]:
    detail: dict[str, Any] = {
        "code": code.value if code else None,
        "error": error,
        "errors": [e.model_dump(mode="json") for e in errors],
    }
    detail.update(extra)
    return detail


def unwrap(result: OperationResult[T]) -> T:
    """Return the payload of a successful result or raise the mapped HTTP error."""
    if result.success:
        return result.data  # type: ignore[return-value]
    status = STATUS_CODES.get(result.code, 400) if result.code else 400
    raise HTTPException(
        status_code=status,
        detail=_error_detail(result.code, result.error, result.errors),
    )


def unwrap_transition(result: TransitionResult) -> TransitionResult:
    """Return a successful transition result or raise the mapped HTTP error."""
    if result.success:
        return result
    status = STATUS_CODES.get(result.code, 400) if result.code else 400
    raise HTTPException(
        status_code=status,
        detail=_error_detail(
            result.code,
            result.error,
            result.errors,
            warnings=result.warnings,
            previous_state=result.previous_state.value if result.previous_state else None,
        ),
    )
