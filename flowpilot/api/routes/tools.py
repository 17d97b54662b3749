"""
Tools API Routes.

Endpoints for listing the tools available to tool and agent nodes.
"""

from fastapi import APIRouter, Depends, HTTPException

from flowpilot.api.deps import get_tool_registry
from flowpilot.api.schemas import ErrorResponse, ToolInfo, ToolListResponse
from flowpilot.tools.registry import ToolRegistry


router = APIRouter(prefix="/tools", tags=["Tools"])


@router.get("", response_model=ToolListResponse)
async def list_tools(registry: ToolRegistry = Depends(get_tool_registry)) -> ToolListResponse:
    """List all registered tools."""
    tools = [
        ToolInfo(name=t["name"], description=t["description"], parameters=t["parameters"])
        for t in registry.list_tools()
    ]
    return ToolListResponse(tools=tools, total=len(tools))


@router.get(
    "/{tool_name}",
    response_model=ToolInfo,
    responses={404: {"model": ErrorResponse}},
)
async def get_tool(
    tool_name: str,
    registry: ToolRegistry = Depends(get_tool_registry),
) -> ToolInfo:
    """Get information about a specific tool."""
    tool = registry.get(tool_name)
    if not tool:
        raise HTTPException(status_code=404, detail=f"Tool '{tool_name}' not found")
    return ToolInfo(name=tool.name, description=tool.description, parameters=tool.parameters)
