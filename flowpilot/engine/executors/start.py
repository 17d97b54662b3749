"""
Start node: validates the execution input and seeds the data bag.
"""

from typing import Any, Dict, List
from datetime import datetime

from flowpilot.engine.definition import Node, NodeType
from flowpilot.engine.errors import WorkflowValidationError
from flowpilot.engine.executors.base import NodeExecutor, NodeResult
from flowpilot.engine.resolver import resolve
from flowpilot.engine.services import ExecutionServices
from flowpilot.engine.state import ExecutionState


_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
}


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


class StartExecutor(NodeExecutor):
    """
    Handles ``start`` nodes.

    Config:
        inputVariables: [{name, type, required, default}]
        requiredInputs: [name] (shorthand for required variables)
        defaults: {name: value} applied before the input
        inputMapping: {dataKey: "$.input.path" | literal}; when present only
            mapped values are copied into data
    """

    node_type = NodeType.START.value

    def validate_config(self, node: Node) -> List[str]:
        errors = []
        variables = node.config.get("inputVariables", [])
        if not isinstance(variables, list):
            return [f"Start node '{node.id}': inputVariables must be a list"]
        for variable in variables:
            if not isinstance(variable, dict) or not variable.get("name"):
                errors.append(f"Start node '{node.id}': every input variable needs a name")
            elif variable.get("type") and variable["type"] not in _TYPE_CHECKS:
                errors.append(
                    f"Start node '{node.id}': unknown type '{variable['type']}' "
                    f"for input '{variable['name']}'"
                )
        mapping = node.config.get("inputMapping")
        if mapping is not None and not isinstance(mapping, dict):
            errors.append(f"Start node '{node.id}': inputMapping must be an object")
        return errors

    @staticmethod
    def validate_inputs(node: Node, input_data: Dict[str, Any]) -> None:
        """
        Check the execution input against the start node's declarations.

        Raises:
            WorkflowValidationError: If required inputs are missing or have
                the wrong type
        """
        config = node.config
        problems = []

        required = list(config.get("requiredInputs") or [])
        for variable in config.get("inputVariables") or []:
            if variable.get("required") and "default" not in variable:
                required.append(variable["name"])

        missing = [name for name in required if _is_blank(input_data.get(name))]
        if missing:
            problems.append(f"Missing required inputs: {', '.join(missing)}")

        for variable in config.get("inputVariables") or []:
            name, expected = variable.get("name"), variable.get("type")
            value = input_data.get(name)
            if expected in _TYPE_CHECKS and not _is_blank(value) and not _TYPE_CHECKS[expected](value):
                problems.append(f"Input '{name}' must be of type {expected}")

        if problems:
            raise WorkflowValidationError(
                f"Invalid input for start node '{node.id}': {'; '.join(problems)}",
                node_id=node.id,
                details=problems,
            )

    async def execute(
        self,
        node: Node,
        state: ExecutionState,
        services: ExecutionServices,
    ) -> NodeResult:
        config = node.config
        input_data = state.input
        updates: Dict[str, Any] = {}

        for variable in config.get("inputVariables") or []:
            if "default" in variable:
                updates[variable["name"]] = variable["default"]
        updates.update(config.get("defaults") or {})

        mapping = config.get("inputMapping")
        if mapping:
            scope = state.resolution_scope()
            for target, source in mapping.items():
                if isinstance(source, str) and source.startswith("$"):
                    resolved = resolve(source, scope)
                    if resolved is not None:
                        updates[target] = resolved
                else:
                    updates[target] = source
        else:
            updates.update({k: v for k, v in input_data.items() if not _is_blank(v) or k not in updates})

        self.logger.info(f"Start node '{node.id}' seeded {len(updates)} variables")

        return NodeResult(
            output=updates,
            value={
                "initialized": True,
                "timestamp": datetime.now().isoformat(),
                "inputFields": list(input_data.keys()),
                "mappedFields": list(updates.keys()),
            },
        )
