"""
Node executors - one per node type.
"""

from typing import Dict

from flowpilot.engine.executors.base import NodeExecutor, NodeResult
from flowpilot.engine.executors.start import StartExecutor
from flowpilot.engine.executors.end import EndExecutor
from flowpilot.engine.executors.transform import TransformExecutor
from flowpilot.engine.executors.decision import DecisionExecutor
from flowpilot.engine.executors.agent import AgentExecutor
from flowpilot.engine.executors.tool import ToolExecutor
from flowpilot.engine.executors.human import HumanExecutor


def build_executors() -> Dict[str, NodeExecutor]:
    """Create the fixed node type -> executor table."""
    executors = [
        StartExecutor(),
        EndExecutor(),
        TransformExecutor(),
        DecisionExecutor(),
        AgentExecutor(),
        ToolExecutor(),
        HumanExecutor(),
    ]
    return {executor.node_type: executor for executor in executors}


__all__ = [
    "NodeExecutor",
    "NodeResult",
    "StartExecutor",
    "EndExecutor",
    "TransformExecutor",
    "DecisionExecutor",
    "AgentExecutor",
    "ToolExecutor",
    "HumanExecutor",
    "build_executors",
]
