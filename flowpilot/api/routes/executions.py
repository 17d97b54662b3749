"""
Execution API Routes.

Endpoints for inspecting, resuming and cancelling workflow executions.
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, status
import logging

from flowpilot.api.deps import get_engine, to_http_error
from flowpilot.api.schemas import (
    CancelResponse,
    ErrorResponse,
    ExecutionListResponse,
    ExecutionSummary,
    HumanResponseRequest,
)
from flowpilot.engine.engine import HumanResponse, WorkflowEngine
from flowpilot.engine.errors import WorkflowError


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/executions", tags=["Executions"])


@router.get("", response_model=ExecutionListResponse)
async def list_executions(
    user: Optional[str] = None,
    status: Optional[str] = None,
    offset: int = 0,
    limit: Optional[int] = None,
    engine: WorkflowEngine = Depends(get_engine),
) -> ExecutionListResponse:
    """List executions, newest first, optionally filtered by user and status."""
    records = await engine.list_executions(user=user, status=status, offset=offset, limit=limit)
    executions = [ExecutionSummary(**record.to_dict()) for record in records]
    return ExecutionListResponse(executions=executions, total=len(executions))


@router.get(
    "/{execution_id}",
    response_model=Dict[str, Any],
    responses={404: {"model": ErrorResponse}},
)
async def get_execution(
    execution_id: str,
    engine: WorkflowEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Get the full state of an execution."""
    state = await engine.get_state(execution_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Execution '{execution_id}' not found")
    return state.to_dict()


@router.post(
    "/{execution_id}/respond",
    response_model=Dict[str, Any],
    responses={
        400: {"model": ErrorResponse, "description": "Invalid response"},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Checkpoint is not pending"},
    },
)
async def respond(
    execution_id: str,
    request: HumanResponseRequest,
    engine: WorkflowEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """
    Answer the pending human checkpoint of a paused execution.

    A response for a checkpoint that is no longer pending (already answered,
    or the execution was cancelled) is rejected with 409.
    """
    human_response = HumanResponse(
        checkpoint_id=request.checkpointId,
        response=request.response,
        data=request.data,
    )
    try:
        state = await engine.resume(execution_id, human_response, background=request.background)
    except WorkflowError as e:
        raise to_http_error(e)

    return state.to_dict()


@router.post(
    "/{execution_id}/cancel",
    response_model=CancelResponse,
    responses={404: {"model": ErrorResponse}},
)
async def cancel_execution(
    execution_id: str,
    engine: WorkflowEngine = Depends(get_engine),
) -> CancelResponse:
    """Cancel an execution. Cancelling a finished execution changes nothing."""
    try:
        await engine.cancel(execution_id)
    except WorkflowError as e:
        raise to_http_error(e)

    state = await engine.get_state(execution_id)
    return CancelResponse(
        executionId=execution_id,
        status=state.status,
        message="Execution cancelled" if state.status == "cancelled" else "Execution already finished",
    )


@router.delete(
    "/{execution_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_execution(
    execution_id: str,
    engine: WorkflowEngine = Depends(get_engine),
):
    """Delete an execution, cancelling it first if it is still active."""
    removed = await engine.remove(execution_id)
    if not removed:
        raise HTTPException(status_code=404, detail=f"Execution '{execution_id}' not found")
    logger.info(f"Deleted execution: {execution_id}")
