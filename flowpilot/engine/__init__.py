"""
Engine package - Core workflow orchestration components.
"""

from flowpilot.engine.definition import WorkflowDefinition, Node, Edge, NodeType
from flowpilot.engine.state import ExecutionState, ExecutionStatus, StateManager
from flowpilot.engine.registry import ExecutionRegistry
from flowpilot.engine.engine import WorkflowEngine, HumanResponse

__all__ = [
    "WorkflowDefinition",
    "Node",
    "Edge",
    "NodeType",
    "ExecutionState",
    "ExecutionStatus",
    "StateManager",
    "ExecutionRegistry",
    "WorkflowEngine",
    "HumanResponse",
]
