"""
Interfaces to the engine's external collaborators.

The engine never talks to an LLM provider, a tool implementation or a
database directly. It goes through the protocols below, which callers
implement and inject.
"""

from typing import Any, Dict, List, Optional, Protocol
from dataclasses import dataclass, field
import json


JsonDict = Dict[str, Any]


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""
    id: str
    name: str
    arguments: Any = field(default_factory=dict)

    def parsed_arguments(self) -> JsonDict:
        """Arguments as a dict; providers may send them as a JSON string."""
        if isinstance(self.arguments, dict):
            return self.arguments
        if isinstance(self.arguments, str) and self.arguments.strip():
            try:
                parsed = json.loads(self.arguments)
            except json.JSONDecodeError:
                return {}
            return parsed if isinstance(parsed, dict) else {}
        return {}


@dataclass
class CompletionRequest:
    """Everything a completion service needs for one model call."""
    prompt: str
    system: Optional[str] = None
    model_id: Optional[str] = None
    tools: List[Any] = field(default_factory=list)
    output_schema: Optional[JsonDict] = None
    messages: List[JsonDict] = field(default_factory=list)
    options: JsonDict = field(default_factory=dict)


@dataclass
class CompletionResponse:
    """A model reply: text content plus any requested tool calls."""
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: JsonDict = field(default_factory=dict)


class CompletionService(Protocol):
    """Transport for LLM completions."""

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Run one completion round."""


class ToolInvoker(Protocol):
    """Executes named tools. Raises on failure."""

    async def invoke(self, tool_name: str, params: JsonDict) -> Any:
        """Invoke a tool and return its raw result."""


class StateStore(Protocol):
    """Durable storage for serialized execution state."""

    async def save(self, execution_id: str, state: JsonDict) -> None:
        """Persist a state document, replacing any previous version."""

    async def load(self, execution_id: str) -> Optional[JsonDict]:
        """Load a state document, or None if unknown."""

    async def delete(self, execution_id: str) -> bool:
        """Delete a state document. Returns whether it existed."""

    async def list_ids(self) -> List[str]:
        """Ids of all stored executions."""


@dataclass
class ExecutionServices:
    """
    Per-execution collaborators and limits handed to node executors.

    Attributes:
        completion: LLM completion service (required by agent nodes)
        tools: Tool invoker (required by tool nodes and agent tool use)
        language: Preferred language for localized text
        user: Identifier of the user who started the execution
        agent_max_iterations: Default tool-use rounds for agent nodes
        error_policy: Default "fail" or "continue" for external-call nodes
    """
    completion: Optional[CompletionService] = None
    tools: Optional[ToolInvoker] = None
    language: str = "en"
    user: Optional[str] = None
    agent_max_iterations: int = 10
    error_policy: str = "fail"
