"""
Tool Registry for FlowPilot.

The tool registry maintains a collection of callable tools that tool nodes
and agent nodes can invoke by name. Tools are plain Python functions, sync
or async, that take keyword arguments and return a JSON-compatible result.
"""

from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
import asyncio
import functools
import inspect
import logging


logger = logging.getLogger(__name__)


class ToolNotFoundError(KeyError):
    """Raised when invoking a tool that is not registered."""


@dataclass
class Tool:
    """
    A registered tool.

    Attributes:
        name: Unique identifier for the tool
        func: The callable function
        description: Human-readable description
        parameters: Parameter descriptions
    """
    name: str
    func: Callable
    description: str = ""
    parameters: Dict[str, str] = field(default_factory=dict)

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.func)

    async def invoke(self, params: Dict[str, Any]) -> Any:
        """Call the tool with keyword arguments; sync tools run in a thread."""
        if self.is_async:
            return await self.func(**params)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self.func, **params))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize tool metadata."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
            "async": self.is_async,
        }


def _signature_params(func: Callable) -> Dict[str, str]:
    params = {}
    for param_name, param in inspect.signature(func).parameters.items():
        if param_name in ("self", "cls") or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        if param.annotation is inspect.Parameter.empty:
            params[param_name] = "Any"
        else:
            params[param_name] = getattr(param.annotation, "__name__", str(param.annotation))
    return params


class ToolRegistry:
    """
    Registry for workflow tools.

    Implements the engine's ToolInvoker interface, so an instance can be
    passed straight to ``WorkflowEngine(tools=...)``.

    Usage:
        registry = ToolRegistry()

        @registry.register("word_count")
        def word_count(text: str) -> dict:
            return {"words": len(text.split())}

        result = await registry.invoke("word_count", {"text": "hello world"})
    """

    def __init__(self):
        self._tools: Dict[str, Tool] = {}

    def register(
        self,
        name: Optional[str] = None,
        description: str = "",
        parameters: Optional[Dict[str, str]] = None
    ) -> Callable:
        """
        Decorator to register a function as a tool.

        Args:
            name: Tool name (defaults to function name)
            description: Tool description (defaults to docstring)
            parameters: Parameter descriptions (defaults to the signature)

        Returns:
            Decorator function
        """
        def decorator(func: Callable) -> Callable:
            self.add(func, name=name, description=description, parameters=parameters)
            return func

        return decorator

    def add(
        self,
        func: Callable,
        name: Optional[str] = None,
        description: str = "",
        parameters: Optional[Dict[str, str]] = None
    ) -> Tool:
        """
        Directly add a function as a tool (non-decorator version).

        Args:
            func: The function to register
            name: Tool name (defaults to function name)
            description: Tool description
            parameters: Parameter descriptions

        Returns:
            The registered tool
        """
        tool_name = name or func.__name__
        tool_desc = description or func.__doc__ or ""

        tool = Tool(
            name=tool_name,
            func=func,
            description=tool_desc.strip(),
            parameters=parameters or _signature_params(func),
        )
        self._tools[tool_name] = tool
        logger.debug(f"Registered tool: {tool_name}")
        return tool

    def get(self, name: str) -> Optional[Tool]:
        """Get a tool by name."""
        return self._tools.get(name)

    async def invoke(self, tool_name: str, params: Dict[str, Any]) -> Any:
        """
        Invoke a tool by name.

        Args:
            tool_name: Tool name
            params: Keyword arguments for the tool

        Returns:
            Tool result

        Raises:
            ToolNotFoundError: If the tool is not registered
        """
        tool = self.get(tool_name)
        if not tool:
            raise ToolNotFoundError(f"Tool '{tool_name}' not found in registry")

        logger.debug(f"Invoking tool '{tool_name}' with {list(params.keys())}")
        return await tool.invoke(params)

    def unregister(self, name: str) -> bool:
        """Drop a tool. Workflows naming it fail at their next call."""
        if self._tools.pop(name, None) is None:
            return False
        logger.debug(f"Unregistered tool: {name}")
        return True

    def names(self) -> List[str]:
        return sorted(self._tools)

    def list_tools(self) -> List[Dict[str, Any]]:
        """Metadata of every tool, ordered by name."""
        return [self._tools[name].to_dict() for name in self.names()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


# Global tool registry instance
tool_registry = ToolRegistry()


def register_tool(
    name: Optional[str] = None,
    description: str = "",
    parameters: Optional[Dict[str, str]] = None
) -> Callable:
    """
    Convenience decorator to register a tool in the global registry.

    Usage:
        @register_tool("lookup_customer", description="Fetch a customer record")
        async def lookup_customer(customer_id: str) -> dict:
            ...
    """
    return tool_registry.register(name, description, parameters)
