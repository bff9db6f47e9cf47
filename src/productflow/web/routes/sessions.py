"""Edit session endpoints.

Routes:
    GET /records/{record_id}/edit-session - Current live session, if any
    POST /records/{record_id}/edit-session - Start or refresh the caller's session
    PUT /records/{record_id}/edit-session - Record activity on the caller's session
    DELETE /records/{record_id}/edit-session - End the caller's session
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from productflow.domain import Identity
from productflow.engine import WorkflowEngine
from productflow.errors import ErrorCode
from productflow.web.dependencies import STATUS_CODES, get_identity, get_workflow_engine, unwrap
from productflow.workflow import EditSession


def create_sessions_router() -> APIRouter:
    """Create the edit session router."""
    router = APIRouter(prefix="/records/{record_id}/edit-session", tags=["edit-sessions"])

    @router.get("", response_model=EditSession | None)
    async def get_session(
        record_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> EditSession | None:
        return unwrap(await engine.get_edit_session(record_id, identity))

    @router.post("", response_model=EditSession, status_code=201)
    async def start_session(
        record_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> EditSession:
        result = await engine.start_edit_session(record_id, identity)
        if result.code == ErrorCode.CONFLICT and result.data is not None:
            # Tell the caller who holds the record
            raise HTTPException(
                status_code=STATUS_CODES[ErrorCode.CONFLICT],
                detail={
                    "code": ErrorCode.CONFLICT.value,
                    "error": result.error,
                    "holder": result.data.model_dump(mode="json"),
                },
            )
        return unwrap(result)

    @router.put("", status_code=204)
    async def touch_session(
        record_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> None:
        unwrap(await engine.touch_edit_session(record_id, identity))

    @router.delete("", status_code=204)
    async def end_session(
        record_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> None:
        unwrap(await engine.end_edit_session(record_id, identity))

    return router
