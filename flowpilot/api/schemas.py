"""
Pydantic Schemas for API Request/Response Models.

Workflow definitions and execution state documents travel as the engine's
own camelCase JSON; these schemas cover the envelopes around them.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# ============================================================
# Workflow Schemas
# ============================================================

class WorkflowCreateResponse(BaseModel):
    """Response after registering a workflow definition."""
    workflow_id: str = Field(..., description="Identifier of the registered workflow")
    name: str = Field(..., description="Display name of the workflow")
    message: str = Field(default="Workflow registered successfully")
    node_count: int = Field(..., description="Number of nodes in the workflow")

    class Config:
        json_schema_extra = {
            "example": {
                "workflow_id": "simple-linear",
                "name": "Simple Linear",
                "message": "Workflow registered successfully",
                "node_count": 3
            }
        }


class WorkflowInfoResponse(BaseModel):
    """Response with workflow information."""
    workflow_id: str
    name: str
    description: Optional[str]
    node_count: int
    nodes: List[str]
    max_iterations: Optional[int]
    allow_cycles: bool
    created_at: str
    definition: Optional[Dict[str, Any]] = Field(None, description="Full workflow definition")
    mermaid_diagram: Optional[str] = Field(None, description="Mermaid diagram of the workflow")


class WorkflowListResponse(BaseModel):
    """Response listing all workflows."""
    workflows: List[WorkflowInfoResponse]
    total: int


# ============================================================
# Execution Schemas
# ============================================================

class ExecutionStartRequest(BaseModel):
    """Request to start a workflow execution."""
    input: Dict[str, Any] = Field(default_factory=dict, description="Execution input")
    language: str = Field("en", description="Language for localized texts")
    user: Optional[str] = Field(None, description="User the execution belongs to")
    background: bool = Field(
        False,
        description="If true, return immediately and run the workflow in the background"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "input": {"content": "Quarterly report draft"},
                "language": "en",
                "user": "alice",
                "background": False
            }
        }


class HumanResponseRequest(BaseModel):
    """A response to a pending human checkpoint."""
    checkpointId: str = Field(..., description="Id of the pending checkpoint")
    response: str = Field(..., description="Chosen option value")
    data: Optional[Dict[str, Any]] = Field(None, description="Form data for the checkpoint")
    background: bool = Field(False, description="Continue the execution in the background")

    class Config:
        json_schema_extra = {
            "example": {
                "checkpointId": "ckpt-3f0c8e9a-5d4b-4c1e-9a47-1b2c3d4e5f60",
                "response": "approve",
                "data": {"feedback": "Looks good"}
            }
        }


class ExecutionSummary(BaseModel):
    """Registry summary of one execution."""
    executionId: str
    workflowId: str
    userId: Optional[str] = None
    workflowName: Any = None
    status: str
    currentNode: Optional[str] = None
    pendingCheckpoint: Optional[Dict[str, Any]] = None
    startedAt: str
    updatedAt: str
    completedAt: Optional[str] = None


class ExecutionListResponse(BaseModel):
    """Response listing executions."""
    executions: List[ExecutionSummary]
    total: int


class CancelResponse(BaseModel):
    """Response after a cancel request."""
    executionId: str
    status: str
    message: str


# ============================================================
# Tool Schemas
# ============================================================

class ToolInfo(BaseModel):
    """Information about a registered tool."""
    name: str
    description: str
    parameters: Dict[str, str]


class ToolListResponse(BaseModel):
    """Response listing all registered tools."""
    tools: List[ToolInfo]
    total: int


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: Any
