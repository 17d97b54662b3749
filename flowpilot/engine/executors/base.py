"""
Base class and result type for node executors.
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
import logging

from flowpilot.engine.definition import Node
from flowpilot.engine.resolver import localize, resolve_all
from flowpilot.engine.services import ExecutionServices
from flowpilot.engine.state import Checkpoint, ExecutionState


@dataclass
class NodeResult:
    """
    What a node produced.

    Attributes:
        output: Key/value updates merged shallowly into ``state.data``
        value: The node's primary result, stored in ``nodeOutputs`` and
            visible to edge conditions as ``result.output``
        branch: Branch label for edge conditions (``result.branch``)
        checkpoint: Set when the node asks to pause for human input
        terminal: True for end nodes
        status: Terminal status to finish with (end nodes only)
        error: Error message when the node failed but execution continues
    """
    output: Dict[str, Any] = field(default_factory=dict)
    value: Any = None
    branch: Optional[str] = None
    checkpoint: Optional[Checkpoint] = None
    terminal: bool = False
    status: Optional[str] = None
    error: Optional[str] = None

    def condition_scope(self) -> Dict[str, Any]:
        """The ``result`` root seen by edge conditions."""
        return {
            "status": "error" if self.error else "completed",
            "branch": self.branch,
            "output": self.value,
            "value": self.value,
            "error": self.error,
        }


class NodeExecutor:
    """
    Base class for node executors.

    Subclasses set ``node_type`` and implement ``execute``. Executors are
    stateless; one instance serves every node of its type.
    """

    node_type: str = ""

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{type(self).__name__}")

    def validate_config(self, node: Node) -> List[str]:
        """
        Check a node's configuration at definition load time.

        Returns:
            List of validation errors (empty if valid)
        """
        return []

    async def execute(
        self,
        node: Node,
        state: ExecutionState,
        services: ExecutionServices,
    ) -> NodeResult:
        raise NotImplementedError

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    @staticmethod
    def resolve(value: Any, state: ExecutionState) -> Any:
        """Resolve paths and templates in ``value`` against the state."""
        return resolve_all(value, state)

    @staticmethod
    def localized(value: Any, state: ExecutionState, services: ExecutionServices) -> Any:
        """Pick the execution's language out of a language map, then resolve."""
        language = services.language or state.language
        return resolve_all(localize(value, language), state)
