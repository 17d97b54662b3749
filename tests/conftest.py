"""
Shared fixtures: fake collaborators and sample workflows.
"""

import asyncio
import copy
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from flowpilot.config import Settings
from flowpilot.engine.engine import WorkflowEngine
from flowpilot.engine.registry import ExecutionRegistry
from flowpilot.engine.services import CompletionRequest, CompletionResponse, ToolCall
from flowpilot.engine.state import StateManager
from flowpilot.storage.memory import MemoryStateStore
from flowpilot.tools.registry import ToolRegistry
from flowpilot.workflows.library import (
    CONTENT_APPROVAL,
    ITERATIVE_RESEARCH,
    SIMPLE_LINEAR,
    VALUE_DECISION,
)


Reply = Union[CompletionResponse, str, Callable[[CompletionRequest], CompletionResponse]]


class ScriptedCompletion:
    """
    Completion service that replays a script of replies.

    Each call consumes the next reply; once the script is exhausted the
    default reply is returned. Every request is recorded.
    """

    def __init__(self, replies: Optional[List[Reply]] = None, default: Reply = "ok"):
        self.replies = list(replies or [])
        self.default = default
        self.requests: List[CompletionRequest] = []

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        reply: Reply = self.replies.pop(0) if self.replies else self.default
        if callable(reply):
            reply = reply(request)
        if isinstance(reply, str):
            reply = CompletionResponse(content=reply)
        return reply


class FailingCompletion:
    """Completion service whose provider is down."""

    def __init__(self, message: str = "provider unavailable"):
        self.message = message
        self.calls = 0

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.calls += 1
        raise RuntimeError(self.message)


class SlowCompletion:
    """Completion service that takes a while to answer."""

    def __init__(self, delay: float = 5.0):
        self.delay = delay
        self.started = asyncio.Event()

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.started.set()
        await asyncio.sleep(self.delay)
        return CompletionResponse(content="late")


def tool_call(name: str, arguments: Dict[str, Any], call_id: str = "call-1") -> CompletionResponse:
    """A model reply requesting a single tool call."""
    return CompletionResponse(content="", tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)])


@pytest.fixture
def tools() -> ToolRegistry:
    """Tool registry with a few deterministic test tools."""
    registry = ToolRegistry()

    @registry.register("add")
    def add(a: int, b: int) -> Dict[str, int]:
        return {"sum": a + b}

    @registry.register("echo")
    async def echo(**kwargs) -> Dict[str, Any]:
        return {"echo": kwargs}

    @registry.register("search")
    async def search(query: str) -> Dict[str, Any]:
        return {"results": [f"result for {query}"]}

    @registry.register("explode")
    def explode() -> None:
        raise RuntimeError("tool exploded")

    return registry


@pytest.fixture
def settings() -> Settings:
    """Isolated settings with an in-memory state backend."""
    return Settings(STATE_BACKEND="memory", NODE_TIMEOUT_SECONDS=5, LOG_LEVEL="DEBUG")


@pytest.fixture
def make_engine(tools, settings):
    """Factory building an engine with fresh state, registry and the test tools."""

    def _make(completion=None, **overrides) -> WorkflowEngine:
        config = settings.model_copy(update=overrides) if overrides else settings
        return WorkflowEngine(
            state_manager=StateManager(MemoryStateStore()),
            registry=ExecutionRegistry(),
            completion=completion,
            tools=tools,
            config=config,
        )

    return _make


@pytest.fixture
def engine(make_engine) -> WorkflowEngine:
    return make_engine()


@pytest.fixture
def linear_workflow() -> Dict[str, Any]:
    return copy.deepcopy(SIMPLE_LINEAR)


@pytest.fixture
def decision_workflow() -> Dict[str, Any]:
    return copy.deepcopy(VALUE_DECISION)


@pytest.fixture
def approval_workflow() -> Dict[str, Any]:
    return copy.deepcopy(CONTENT_APPROVAL)


@pytest.fixture
def research_workflow() -> Dict[str, Any]:
    return copy.deepcopy(ITERATIVE_RESEARCH)


def single_node_workflow(node: Dict[str, Any], workflow_id: str = "single") -> Dict[str, Any]:
    """start -> node -> end, with the node's error branch (if any) also going to end."""
    return {
        "id": workflow_id,
        "name": workflow_id,
        "config": {"maxIterations": 10},
        "nodes": [
            {"id": "start", "type": "start", "config": {}},
            node,
            {"id": "end", "type": "end", "config": {}},
        ],
        "edges": [
            {"id": "e1", "source": "start", "target": node["id"]},
            {"id": "e2", "source": node["id"], "target": "end"},
        ],
    }
