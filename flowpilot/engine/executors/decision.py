"""
Decision node: picks a branch without touching the data bag.
"""

from typing import Any, Dict, List
import re

from flowpilot.engine.definition import Node, NodeType
from flowpilot.engine.errors import ExpressionError
from flowpilot.engine.expressions import evaluate_condition, validate_expression
from flowpilot.engine.executors.base import NodeExecutor, NodeResult
from flowpilot.engine.resolver import resolve_reference
from flowpilot.engine.services import ExecutionServices
from flowpilot.engine.state import ExecutionState


DECISION_TYPES = ("expression", "switch")


def _compare(value: Any, other: Any, op) -> bool:
    try:
        return bool(op(value, other))
    except TypeError:
        return False


def matches_case(value: Any, case: Dict[str, Any]) -> bool:
    """Whether ``value`` satisfies one switch case."""
    if "equals" in case:
        return value == case["equals"]
    if "notEquals" in case:
        return value != case["notEquals"]
    if "greaterThan" in case:
        return _compare(value, case["greaterThan"], lambda a, b: a > b)
    if "lessThan" in case:
        return _compare(value, case["lessThan"], lambda a, b: a < b)
    if "greaterThanOrEqual" in case:
        return _compare(value, case["greaterThanOrEqual"], lambda a, b: a >= b)
    if "lessThanOrEqual" in case:
        return _compare(value, case["lessThanOrEqual"], lambda a, b: a <= b)
    if "contains" in case:
        return isinstance(value, str) and str(case["contains"]) in value
    if "matches" in case:
        if not isinstance(value, str):
            return False
        try:
            return re.search(case["matches"], value) is not None
        except re.error:
            return False
    if "in" in case:
        return isinstance(case["in"], list) and value in case["in"]
    if "notIn" in case:
        return isinstance(case["notIn"], list) and value not in case["notIn"]
    return False


class DecisionExecutor(NodeExecutor):
    """
    Handles ``decision`` nodes.

    ``type: expression`` evaluates ``expression`` and returns branch
    ``"true"`` or ``"false"``; an expression that cannot be evaluated takes
    the ``"false"`` branch. ``type: switch`` resolves ``variable`` and
    returns the ``branch`` of the first matching entry in ``conditions``,
    or ``defaultBranch``.
    """

    node_type = NodeType.DECISION.value

    def validate_config(self, node: Node) -> List[str]:
        config = node.config
        kind = config.get("type", "expression")
        if kind not in DECISION_TYPES:
            return [f"Decision node '{node.id}': unknown decision type '{kind}'"]

        if kind == "expression":
            if not config.get("expression"):
                return [f"Decision node '{node.id}': expression is required"]
            try:
                validate_expression(config["expression"])
            except ExpressionError as e:
                return [f"Decision node '{node.id}': {e.message}"]
            return []

        errors = []
        if not config.get("variable"):
            errors.append(f"Decision node '{node.id}': switch requires a variable")
        for case in config.get("conditions", []):
            if not isinstance(case, dict) or "branch" not in case:
                errors.append(f"Decision node '{node.id}': every switch condition needs a branch")
        return errors

    async def execute(
        self,
        node: Node,
        state: ExecutionState,
        services: ExecutionServices,
    ) -> NodeResult:
        config = node.config
        kind = config.get("type", "expression")

        if kind == "switch":
            value = resolve_reference(config.get("variable", ""), state)
            branch = config.get("defaultBranch", "default")
            matched = False
            for case in config.get("conditions", []):
                if matches_case(value, case):
                    branch, matched = str(case["branch"]), True
                    break
            self.logger.info(f"Decision node '{node.id}' switch -> '{branch}'")
            return NodeResult(
                branch=branch,
                value={"branch": branch, "value": value, "matched": matched},
            )

        expression = config.get("expression", "")
        try:
            outcome = evaluate_condition(expression, state)
        except ExpressionError as e:
            self.logger.warning(
                f"Decision node '{node.id}' could not evaluate '{expression}', "
                f"taking the false branch: {e}"
            )
            return NodeResult(
                branch="false",
                value={"branch": "false", "value": False, "error": e.message},
            )

        branch = "true" if outcome else "false"
        self.logger.info(f"Decision node '{node.id}' evaluated '{expression}' -> {branch}")
        return NodeResult(branch=branch, value={"branch": branch, "value": outcome})
