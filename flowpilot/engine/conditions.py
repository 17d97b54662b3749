"""
Edge Condition Evaluator.

Decides which outgoing edge a node takes. Conditions are evaluated against
a scope with three roots: ``result`` (what the node just produced),
``data`` and ``nodeOutputs``.

Selection is deterministic: edges are checked in declaration order, the
first conditioned edge that matches wins, and unconditional edges are used
only when no conditioned edge matches.
"""

from typing import Any, Dict, List, Mapping, Optional
import logging

from flowpilot.engine.definition import ConditionType, Edge, EdgeCondition
from flowpilot.engine.errors import ExpressionError, NoMatchingEdgeError
from flowpilot.engine.expressions import evaluate_condition
from flowpilot.engine.resolver import PATH_PREFIX, parse_path, lookup, resolve


logger = logging.getLogger(__name__)


def build_scope(
    result: Optional[Mapping[str, Any]],
    data: Mapping[str, Any],
    node_outputs: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Assemble the scope edge conditions are evaluated against."""
    return {
        "result": dict(result or {}),
        "data": data,
        "nodeOutputs": node_outputs or {},
    }


def _field_value(field: str, scope: Mapping[str, Any]) -> Any:
    value = resolve(field, scope)
    if value is None and not field.startswith(PATH_PREFIX):
        # Bare names fall back to the data bag: `approved` == `data.approved`
        segments = parse_path(field)
        if segments is not None:
            value = lookup(segments, scope.get("data"))
    return value


def _contains(container: Any, item: Any) -> bool:
    if isinstance(container, str):
        return item is not None and str(item) in container
    if isinstance(container, (list, tuple, set)):
        return item in container
    if isinstance(container, dict):
        return item in container
    return False


def condition_matches(condition: Optional[EdgeCondition], scope: Mapping[str, Any]) -> bool:
    """
    Evaluate a single edge condition.

    Args:
        condition: The edge's condition (None means unconditional)
        scope: Result, data and node output roots

    Returns:
        Whether the condition holds. Malformed expressions count as False.
    """
    if condition is None:
        return True

    kind = condition.type

    if kind == ConditionType.ALWAYS.value:
        return True
    if kind == ConditionType.NEVER.value:
        return False

    if kind == ConditionType.EXPRESSION.value:
        expression = condition.expression or condition.value
        try:
            return evaluate_condition(expression, scope)
        except ExpressionError as e:
            logger.warning(f"Edge condition expression failed, treating as false: {e}")
            return False

    actual = _field_value(condition.field or "", scope)

    if kind == ConditionType.EQUALS.value:
        return actual == condition.value
    if kind == ConditionType.NOT_EQUALS.value:
        return actual != condition.value
    if kind == ConditionType.CONTAINS.value:
        return _contains(actual, condition.value)
    if kind == ConditionType.EXISTS.value:
        present = actual is not None
        return present if condition.value is not False else not present

    logger.warning(f"Unknown condition type '{kind}', treating as false")
    return False


def matching_edges(edges: List[Edge], scope: Mapping[str, Any]) -> List[Edge]:
    """
    All edges that may be taken, in priority order.

    Matching conditioned edges come first (declaration order), followed by
    unconditional edges (declaration order).
    """
    conditioned: List[Edge] = []
    fallback: List[Edge] = []

    for edge in edges:
        if not edge.is_conditional:
            fallback.append(edge)
        elif condition_matches(edge.condition, scope):
            conditioned.append(edge)

    return conditioned + fallback


def select_edge(node_id: str, edges: List[Edge], scope: Mapping[str, Any]) -> Edge:
    """
    Pick the edge to follow out of a node.

    Raises:
        NoMatchingEdgeError: If no edge matches
    """
    candidates = matching_edges(edges, scope)
    if not candidates:
        raise NoMatchingEdgeError(
            f"No outgoing edge matched for node '{node_id}'",
            node_id=node_id,
        )

    chosen = candidates[0]
    logger.debug(f"Node '{node_id}' -> '{chosen.target}' via edge '{chosen.id}'")
    return chosen
