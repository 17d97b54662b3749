"""
Tools package - Tool registry and built-in tools.
"""

from flowpilot.tools.registry import (
    Tool,
    ToolNotFoundError,
    ToolRegistry,
    tool_registry,
    register_tool,
)

__all__ = [
    "Tool",
    "ToolNotFoundError",
    "ToolRegistry",
    "tool_registry",
    "register_tool",
]
