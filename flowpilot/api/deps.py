"""
Shared dependencies for API routes.

The engine, workflow store and tool registry live on ``app.state`` (set up
by ``create_app``), so tests can build an app around their own instances.
"""

from fastapi import HTTPException, Request

from flowpilot.engine.engine import WorkflowEngine
from flowpilot.engine.errors import (
    ExecutionNotFoundError,
    WorkflowError,
    WorkflowValidationError,
)
from flowpilot.storage.memory import WorkflowStore
from flowpilot.tools.registry import ToolRegistry


def get_engine(request: Request) -> WorkflowEngine:
    return request.app.state.engine


def get_workflow_store(request: Request) -> WorkflowStore:
    return request.app.state.workflow_store


def get_tool_registry(request: Request) -> ToolRegistry:
    return request.app.state.tool_registry


def to_http_error(error: WorkflowError) -> HTTPException:
    """Map an engine error to the HTTP status it stands for."""
    if isinstance(error, WorkflowValidationError):
        status_code = 400
    elif isinstance(error, ExecutionNotFoundError):
        status_code = 404
    else:
        # Stale checkpoints and other state conflicts
        status_code = 409
    return HTTPException(status_code=status_code, detail=error.to_dict())
