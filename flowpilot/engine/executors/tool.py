"""
Tool node: one direct tool invocation.
"""

from typing import Any, Dict, List

from flowpilot.engine.definition import Node, NodeType
from flowpilot.engine.errors import ExternalCallError
from flowpilot.engine.executors.base import NodeExecutor, NodeResult
from flowpilot.engine.services import ExecutionServices
from flowpilot.engine.state import ExecutionState


def tool_name(config: Dict[str, Any]) -> str:
    return config.get("toolName") or config.get("toolId") or ""


def tool_params(config: Dict[str, Any]) -> Dict[str, Any]:
    params = config.get("params")
    if params is None:
        params = config.get("parameters")
    return params or {}


class ToolExecutor(NodeExecutor):
    """
    Handles ``tool`` nodes.

    Config:
        toolName (or toolId): Registered tool to call
        params (or parameters): Arguments, with paths and templates resolved
        outputVariable: Data key for the raw result

    The tool is invoked exactly once. Lists in params are passed through
    as-is; fanning out over items is left to an agent node.
    """

    node_type = NodeType.TOOL.value

    def validate_config(self, node: Node) -> List[str]:
        errors = []
        if not tool_name(node.config):
            errors.append(f"Tool node '{node.id}': toolName is required")
        if not isinstance(tool_params(node.config), dict):
            errors.append(f"Tool node '{node.id}': params must be an object")
        return errors

    async def execute(
        self,
        node: Node,
        state: ExecutionState,
        services: ExecutionServices,
    ) -> NodeResult:
        config = node.config
        name = tool_name(config)

        if services.tools is None:
            raise ExternalCallError(
                f"No tool invoker configured for tool node '{node.id}'",
                node_id=node.id,
            )

        params = self.resolve(tool_params(config), state)
        self.logger.info(f"Tool node '{node.id}' invoking '{name}' with {list(params.keys())}")

        try:
            result = await services.tools.invoke(name, params)
        except ExternalCallError:
            raise
        except Exception as e:
            raise ExternalCallError(
                f"Tool '{name}' failed: {e}",
                node_id=node.id,
            ) from e

        output_variable = config.get("outputVariable")
        return NodeResult(
            output={output_variable: result} if output_variable else {},
            value=result,
        )
