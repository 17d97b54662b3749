"""
Transform node: deterministic data operations.

Operations run in order against a working copy of the data bag, so each
operation sees the results of the ones before it. Supported forms:

    {"set": "x", "value": ...}               assign (templates resolved)
    {"copy": "a.b", "to": "c"}               copy a value
    {"increment": "n", "by": 1}              add to a number (missing -> 0)
    {"push": "item", "to": "items"}          append to a list
    {"merge": "patch", "into": "obj"}        shallow-merge objects
    {"arrayGet": "items", "index": 0, "to": "first"}
    {"lengthOf": "items", "to": "count"}
    {"condition": "<expr>", "to": "x", "then": ..., "else": ...}
"""

from typing import Any, Callable, Dict, List
from copy import deepcopy

from flowpilot.engine.definition import Node, NodeType
from flowpilot.engine.errors import ExpressionError, WorkflowError
from flowpilot.engine.expressions import evaluate_condition, validate_expression
from flowpilot.engine.executors.base import NodeExecutor, NodeResult
from flowpilot.engine.resolver import resolve_all, resolve_reference, set_path
from flowpilot.engine.services import ExecutionServices
from flowpilot.engine.state import ExecutionState


# Operation name -> keys that must accompany it
OPERATIONS: Dict[str, tuple] = {
    "set": ("value",),
    "copy": ("to",),
    "increment": (),
    "push": ("to",),
    "merge": ("into",),
    "arrayGet": ("index", "to"),
    "lengthOf": ("to",),
    "condition": ("to",),
}


def _operation_name(operation: Dict[str, Any]) -> str:
    names = [name for name in OPERATIONS if name in operation]
    return names[0] if len(names) == 1 else ""


def _top_key(path: str) -> str:
    key = path.strip()
    for prefix in ("$.data.", "data.", "$."):
        if key.startswith(prefix):
            key = key[len(prefix):]
            break
    return key.split(".")[0]


class _Workspace:
    """Working copy of the data bag plus the set of top-level keys touched."""

    def __init__(self, state: ExecutionState):
        self.data = deepcopy(state.data)
        self.scope = dict(state.resolution_scope())
        self.scope["data"] = self.data
        self.touched: List[str] = []

    def get(self, path: str) -> Any:
        return resolve_reference(path, self.scope)

    def set(self, path: str, value: Any) -> None:
        set_path(self.data, path, deepcopy(value))
        key = _top_key(path)
        if key not in self.touched:
            self.touched.append(key)

    def updates(self) -> Dict[str, Any]:
        return {key: self.data[key] for key in self.touched if key in self.data}


class TransformExecutor(NodeExecutor):
    """Handles ``transform`` nodes."""

    node_type = NodeType.TRANSFORM.value

    def __init__(self):
        super().__init__()
        self._handlers: Dict[str, Callable[[Dict[str, Any], _Workspace], None]] = {
            "set": self._set,
            "copy": self._copy,
            "increment": self._increment,
            "push": self._push,
            "merge": self._merge,
            "arrayGet": self._array_get,
            "lengthOf": self._length_of,
            "condition": self._condition,
        }

    def validate_config(self, node: Node) -> List[str]:
        errors = []
        operations = node.config.get("operations", [])
        if not isinstance(operations, list):
            return [f"Transform node '{node.id}': operations must be a list"]

        for index, operation in enumerate(operations):
            name = _operation_name(operation) if isinstance(operation, dict) else ""
            if not name:
                errors.append(
                    f"Transform node '{node.id}': operation {index} must name exactly one of "
                    f"{', '.join(OPERATIONS)}"
                )
                continue
            missing = [key for key in OPERATIONS[name] if key not in operation]
            if missing:
                errors.append(
                    f"Transform node '{node.id}': '{name}' operation {index} "
                    f"is missing {', '.join(missing)}"
                )
            if name == "condition":
                try:
                    validate_expression(operation["condition"])
                except ExpressionError as e:
                    errors.append(f"Transform node '{node.id}': {e.message}")
        return errors

    async def execute(
        self,
        node: Node,
        state: ExecutionState,
        services: ExecutionServices,
    ) -> NodeResult:
        workspace = _Workspace(state)

        for operation in node.config.get("operations", []):
            name = _operation_name(operation)
            if not name:
                raise WorkflowError(
                    f"Transform node '{node.id}' has an invalid operation: {operation}",
                    node_id=node.id,
                )
            self._handlers[name](operation, workspace)

        updates = workspace.updates()
        self.logger.info(f"Transform node '{node.id}' updated {list(updates.keys())}")

        return NodeResult(
            output=updates,
            value={"transformedVariables": list(updates.keys())},
        )

    # ------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------

    def _set(self, op: Dict[str, Any], ws: _Workspace) -> None:
        ws.set(op["set"], resolve_all(op.get("value"), ws.scope))

    def _copy(self, op: Dict[str, Any], ws: _Workspace) -> None:
        value = ws.get(op["copy"])
        if value is None:
            self.logger.warning(f"COPY source not found: {op['copy']}")
            return
        ws.set(op["to"], value)

    def _increment(self, op: Dict[str, Any], ws: _Workspace) -> None:
        current = ws.get(op["increment"])
        if not isinstance(current, (int, float)) or isinstance(current, bool):
            current = 0
        by = op.get("by", 1)
        if not isinstance(by, (int, float)):
            by = resolve_all(by, ws.scope)
        ws.set(op["increment"], current + by)

    def _push(self, op: Dict[str, Any], ws: _Workspace) -> None:
        item = ws.get(op["push"]) if isinstance(op["push"], str) else op["push"]
        if item is None:
            self.logger.warning(f"PUSH item not found: {op['push']}")
            return
        current = ws.get(op["to"])
        items = list(current) if isinstance(current, list) else []
        items.append(item)
        ws.set(op["to"], items)

    def _merge(self, op: Dict[str, Any], ws: _Workspace) -> None:
        source = ws.get(op["merge"])
        if not isinstance(source, dict):
            self.logger.warning(f"MERGE source is not an object: {op['merge']}")
            return
        target = ws.get(op["into"])
        merged = dict(target) if isinstance(target, dict) else {}
        merged.update(source)
        ws.set(op["into"], merged)

    def _array_get(self, op: Dict[str, Any], ws: _Workspace) -> None:
        items = ws.get(op["arrayGet"])
        index = op["index"]
        if isinstance(index, str):
            index = ws.get(index)
        try:
            index = int(index)
        except (TypeError, ValueError):
            index = -1

        if isinstance(items, list) and 0 <= index < len(items):
            ws.set(op["to"], items[index])
        else:
            self.logger.warning(f"ARRAY_GET index out of bounds or not an array: {op['arrayGet']}[{index}]")
            ws.set(op["to"], "")

    def _length_of(self, op: Dict[str, Any], ws: _Workspace) -> None:
        value = ws.get(op["lengthOf"])
        ws.set(op["to"], len(value) if isinstance(value, (list, str, dict)) else 0)

    def _condition(self, op: Dict[str, Any], ws: _Workspace) -> None:
        try:
            matched = evaluate_condition(op["condition"], ws.scope)
        except ExpressionError as e:
            self.logger.warning(f"CONDITION failed, using else branch: {e}")
            matched = False
        chosen = op.get("then") if matched else op.get("else")
        ws.set(op["to"], resolve_all(chosen, ws.scope))
