"""
Workflow API Routes.

Endpoints for registering, inspecting and starting workflow definitions.
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, status
import logging

from flowpilot.api.deps import get_engine, get_workflow_store, to_http_error
from flowpilot.api.schemas import (
    ErrorResponse,
    ExecutionStartRequest,
    WorkflowCreateResponse,
    WorkflowInfoResponse,
    WorkflowListResponse,
)
from flowpilot.engine.engine import WorkflowEngine
from flowpilot.engine.errors import WorkflowError
from flowpilot.engine.resolver import localize
from flowpilot.storage.memory import StoredWorkflow, WorkflowStore


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["Workflows"])


def _info(
    stored: StoredWorkflow,
    language: Optional[str] = None,
    detailed: bool = False,
) -> WorkflowInfoResponse:
    definition = stored.definition
    return WorkflowInfoResponse(
        workflow_id=stored.workflow_id,
        name=definition.display_name(language),
        description=localize(definition.description, language),
        node_count=len(definition.nodes),
        nodes=[node.id for node in definition.nodes],
        max_iterations=definition.config.max_iterations,
        allow_cycles=definition.config.allow_cycles,
        created_at=stored.created_at.isoformat(),
        definition=definition.to_dict() if detailed else None,
        mermaid_diagram=definition.to_mermaid(language) if detailed else None,
    )


# ============================================================
# Workflow CRUD Endpoints
# ============================================================

@router.post(
    "",
    response_model=WorkflowCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse, "description": "Invalid workflow definition"}},
)
async def create_workflow(
    document: Dict[str, Any],
    engine: WorkflowEngine = Depends(get_engine),
    store: WorkflowStore = Depends(get_workflow_store),
) -> WorkflowCreateResponse:
    """
    Register a workflow definition.

    The definition is validated (structure, cycles, node configs) before it
    is stored. Registering an existing id replaces that workflow.
    """
    try:
        definition = engine.validate(document)
    except WorkflowError as e:
        raise to_http_error(e)

    await store.save(definition)
    logger.info(f"Registered workflow: {definition.id} ({len(definition.nodes)} nodes)")

    return WorkflowCreateResponse(
        workflow_id=definition.id,
        name=definition.display_name(),
        node_count=len(definition.nodes),
    )


@router.get("", response_model=WorkflowListResponse)
async def list_workflows(
    language: Optional[str] = None,
    store: WorkflowStore = Depends(get_workflow_store),
) -> WorkflowListResponse:
    """List all registered workflows."""
    workflows = [_info(stored, language) for stored in await store.list_all()]
    return WorkflowListResponse(workflows=workflows, total=len(workflows))


@router.get(
    "/{workflow_id}",
    response_model=WorkflowInfoResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_workflow(
    workflow_id: str,
    language: Optional[str] = None,
    store: WorkflowStore = Depends(get_workflow_store),
) -> WorkflowInfoResponse:
    """Get a workflow with its full definition and a Mermaid diagram."""
    stored = await store.get(workflow_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Workflow '{workflow_id}' not found")
    return _info(stored, language, detailed=True)


@router.delete(
    "/{workflow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_workflow(
    workflow_id: str,
    store: WorkflowStore = Depends(get_workflow_store),
):
    """Delete a workflow. Running executions keep their own snapshot."""
    deleted = await store.delete(workflow_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Workflow '{workflow_id}' not found")
    logger.info(f"Deleted workflow: {workflow_id}")


# ============================================================
# Execution Endpoints
# ============================================================

@router.post(
    "/{workflow_id}/executions",
    response_model=Dict[str, Any],
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input"},
        404: {"model": ErrorResponse},
    },
)
async def start_execution(
    workflow_id: str,
    request: ExecutionStartRequest,
    engine: WorkflowEngine = Depends(get_engine),
    store: WorkflowStore = Depends(get_workflow_store),
) -> Dict[str, Any]:
    """
    Start an execution of a registered workflow.

    Without ``background`` the call returns once the execution pauses at a
    human checkpoint or finishes. With ``background`` it returns the freshly
    started state; poll ``GET /executions/{id}`` or subscribe over WebSocket.
    """
    stored = await store.get(workflow_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Workflow '{workflow_id}' not found")

    try:
        state = await engine.start(
            stored.definition,
            request.input,
            {"language": request.language, "user": request.user},
            background=request.background,
        )
    except WorkflowError as e:
        raise to_http_error(e)

    return state.to_dict()
