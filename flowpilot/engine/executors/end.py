"""
End node: projects the final output and finishes the execution.
"""

from typing import Any, Dict, List

from flowpilot.engine.definition import Node, NodeType
from flowpilot.engine.executors.base import NodeExecutor, NodeResult
from flowpilot.engine.resolver import resolve, resolve_all
from flowpilot.engine.services import ExecutionServices
from flowpilot.engine.state import ACTIVE_STATUSES, ExecutionState, ExecutionStatus


class EndExecutor(NodeExecutor):
    """
    Handles ``end`` nodes.

    The output is built from the first of these that is configured:
    ``outputMapping``, ``includeFields``, ``excludeFields``,
    ``outputVariables``. Without any of them, all data except internal
    ``_``-prefixed keys is returned.

    ``status`` declares a terminal alias such as ``approved`` or
    ``rejected`` (defaults to ``completed``).
    """

    node_type = NodeType.END.value

    def validate_config(self, node: Node) -> List[str]:
        errors = []
        status = node.config.get("status")
        if status is not None and (not isinstance(status, str) or status in ACTIVE_STATUSES):
            errors.append(
                f"End node '{node.id}': status must be a terminal status, got {status!r}"
            )
        for key in ("includeFields", "excludeFields", "outputVariables"):
            value = node.config.get(key)
            if value is not None and not isinstance(value, list):
                errors.append(f"End node '{node.id}': {key} must be a list")
        return errors

    def _project(self, config: Dict[str, Any], state: ExecutionState) -> Dict[str, Any]:
        data = state.data

        if config.get("outputMapping"):
            output = {}
            for key, source in config["outputMapping"].items():
                if isinstance(source, str) and source.startswith("$"):
                    resolved = resolve(source, state.resolution_scope())
                    if resolved is not None:
                        output[key] = resolved
                else:
                    output[key] = resolve_all(source, state)
            return output

        if config.get("includeFields"):
            return {k: data[k] for k in config["includeFields"] if k in data}

        if config.get("excludeFields"):
            excluded = set(config["excludeFields"])
            return {k: v for k, v in data.items() if k not in excluded}

        if config.get("outputVariables"):
            return {k: data[k] for k in config["outputVariables"] if k in data}

        return {k: v for k, v in data.items() if not k.startswith("_")}

    async def execute(
        self,
        node: Node,
        state: ExecutionState,
        services: ExecutionServices,
    ) -> NodeResult:
        config = node.config
        output = self._project(config, state)

        if config.get("includeNodeOutputs"):
            output["_nodeOutputs"] = dict(state.node_outputs)

        status = config.get("status") or ExecutionStatus.COMPLETED.value

        self.logger.info(
            f"End node '{node.id}' finished workflow with status '{status}' "
            f"({len(output)} output keys)"
        )

        return NodeResult(
            value=output,
            terminal=True,
            status=status,
        )
