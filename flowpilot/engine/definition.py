"""
Workflow Definition model.

A workflow is a directed graph of typed nodes connected by (optionally
conditional) edges. Definitions are authored as JSON documents with
camelCase keys; unknown keys such as editor ``position`` data are kept so a
document survives a load/dump round trip unchanged.
"""

from typing import Any, Dict, List, Optional, Set, Union
from collections import deque
from enum import Enum

from pydantic import BaseModel, Field

from flowpilot.engine.errors import ExpressionError, WorkflowValidationError
from flowpilot.engine.expressions import validate_expression
from flowpilot.engine.resolver import localize


# A plain string or a language map such as {"en": "Review", "de": "Prüfung"}
LocalizedText = Union[str, Dict[str, str]]


class NodeType(str, Enum):
    """Supported node types."""
    START = "start"
    END = "end"
    TRANSFORM = "transform"
    DECISION = "decision"
    AGENT = "agent"
    TOOL = "tool"
    HUMAN = "human"


class ConditionType(str, Enum):
    """Supported edge condition types."""
    ALWAYS = "always"
    NEVER = "never"
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    EXISTS = "exists"
    EXPRESSION = "expression"


class EdgeCondition(BaseModel):
    """Guard on an edge."""

    type: str
    field: Optional[str] = None
    value: Any = None
    expression: Optional[str] = None

    class Config:
        extra = "allow"


class Edge(BaseModel):
    """A transition between two nodes."""

    id: str
    source: str
    target: str
    condition: Optional[EdgeCondition] = None

    class Config:
        extra = "allow"

    @property
    def is_conditional(self) -> bool:
        return self.condition is not None and self.condition.type != ConditionType.ALWAYS.value


class Node(BaseModel):
    """
    A single step in a workflow.

    Attributes:
        id: Unique identifier within the workflow
        type: One of the NodeType values
        name: Display name, optionally localized
        config: Type specific configuration
        timeout: Optional per-node timeout for external calls, in milliseconds
    """

    id: str
    type: str
    name: Optional[LocalizedText] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    timeout: Optional[Union[int, float]] = None

    class Config:
        extra = "allow"

    def display_name(self, language: Optional[str] = None) -> str:
        return localize(self.name, language) or self.id


class WorkflowConfig(BaseModel):
    """Workflow-wide execution settings."""

    max_iterations: Optional[int] = Field(default=None, alias="maxIterations")
    allow_cycles: bool = Field(default=False, alias="allowCycles")

    class Config:
        extra = "allow"
        populate_by_name = True


class WorkflowDefinition(BaseModel):
    """
    A complete workflow document.

    Usage:
        definition = WorkflowDefinition.from_dict(document)
        errors = definition.validate_structure()
    """

    id: str
    name: LocalizedText = ""
    description: Optional[LocalizedText] = None
    config: WorkflowConfig = Field(default_factory=WorkflowConfig)
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)

    class Config:
        extra = "allow"
        populate_by_name = True

    # ------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDefinition":
        """Load a definition from its JSON document form."""
        return cls.model_validate(data)

    def to_dict(self) -> Dict[str, Any]:
        """Dump back to the JSON document form (camelCase keys)."""
        return self.model_dump(by_alias=True, exclude_unset=True)

    # ------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------

    def get_node(self, node_id: str) -> Optional[Node]:
        """Get a node by id."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    @property
    def start_node(self) -> Optional[Node]:
        for node in self.nodes:
            if node.type == NodeType.START.value:
                return node
        return None

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        """Outgoing edges of a node, in declaration order."""
        return [edge for edge in self.edges if edge.source == node_id]

    def display_name(self, language: Optional[str] = None) -> str:
        return localize(self.name, language) or self.id

    # ------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------

    def validate_structure(self) -> List[str]:
        """
        Validate the graph structure.

        Checks node and edge references, node and condition types, the
        start/end node invariants, reachability and, unless the workflow
        allows cycles, acyclicity.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.nodes:
            errors.append("Workflow must have at least one node")
            return errors

        # Unique node ids
        seen: Set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node id '{node.id}'")
            seen.add(node.id)

        known_types = {t.value for t in NodeType}
        for node in self.nodes:
            if node.type not in known_types:
                errors.append(f"Node '{node.id}' has unknown type '{node.type}'")

        start_nodes = [n for n in self.nodes if n.type == NodeType.START.value]
        end_nodes = [n for n in self.nodes if n.type == NodeType.END.value]
        if len(start_nodes) != 1:
            errors.append(f"Workflow must have exactly one start node, found {len(start_nodes)}")
        if not end_nodes:
            errors.append("Workflow must have at least one end node")

        # Edges
        edge_ids: Set[str] = set()
        condition_types = {t.value for t in ConditionType}
        for edge in self.edges:
            if edge.id in edge_ids:
                errors.append(f"Duplicate edge id '{edge.id}'")
            edge_ids.add(edge.id)

            if edge.source not in seen:
                errors.append(f"Edge '{edge.id}' source '{edge.source}' not found in nodes")
            if edge.target not in seen:
                errors.append(f"Edge '{edge.id}' target '{edge.target}' not found in nodes")

            if edge.condition is None:
                continue
            if edge.condition.type not in condition_types:
                errors.append(
                    f"Edge '{edge.id}' has unknown condition type '{edge.condition.type}'"
                )
            elif edge.condition.type == ConditionType.EXPRESSION.value:
                expression = edge.condition.expression or edge.condition.value
                try:
                    validate_expression(expression)
                except ExpressionError as e:
                    errors.append(f"Edge '{edge.id}': {e.message}")
            elif edge.condition.type in (
                ConditionType.EQUALS.value,
                ConditionType.NOT_EQUALS.value,
                ConditionType.CONTAINS.value,
                ConditionType.EXISTS.value,
            ) and not edge.condition.field:
                errors.append(f"Edge '{edge.id}' condition '{edge.condition.type}' requires a field")

        # Dangling references make the remaining checks meaningless
        if errors:
            return errors

        reachable = self._get_reachable_nodes()
        orphans = [n.id for n in self.nodes if n.id not in reachable]
        if orphans:
            errors.append(f"Orphan nodes (not reachable from start): {orphans}")

        for node in self.nodes:
            if node.type != NodeType.END.value and not self.outgoing_edges(node.id):
                errors.append(f"Node '{node.id}' has no outgoing edges and is not an end node")

        if not self.config.allow_cycles:
            cycle = self.find_cycle_nodes()
            if cycle:
                errors.append(
                    f"Workflow contains a cycle through {sorted(cycle)} but allowCycles is false"
                )

        return errors

    def ensure_valid(self) -> None:
        """Raise WorkflowValidationError if the structure is invalid."""
        errors = self.validate_structure()
        if errors:
            raise WorkflowValidationError(
                f"Workflow '{self.id}' is invalid: {errors[0]}",
                details=errors,
            )

    def _get_reachable_nodes(self) -> Set[str]:
        """Get all nodes reachable from the start node."""
        start = self.start_node
        if start is None:
            return set()

        reachable = set()
        to_visit = [start.id]

        while to_visit:
            node_id = to_visit.pop()
            if node_id in reachable:
                continue
            reachable.add(node_id)
            for edge in self.outgoing_edges(node_id):
                to_visit.append(edge.target)

        return reachable

    def find_cycle_nodes(self) -> Set[str]:
        """
        Detect cycles using Kahn's algorithm.

        Returns:
            Ids of nodes that sit on or behind a cycle (empty if acyclic)
        """
        in_degree: Dict[str, int] = {node.id: 0 for node in self.nodes}
        for edge in self.edges:
            if edge.target in in_degree:
                in_degree[edge.target] += 1

        queue = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
        processed = 0
        while queue:
            node_id = queue.popleft()
            processed += 1
            for edge in self.outgoing_edges(node_id):
                in_degree[edge.target] -= 1
                if in_degree[edge.target] == 0:
                    queue.append(edge.target)

        if processed == len(in_degree):
            return set()
        return {node_id for node_id, degree in in_degree.items() if degree > 0}

    # ------------------------------------------------------------
    # Visualization
    # ------------------------------------------------------------

    def to_mermaid(self, language: Optional[str] = None) -> str:
        """Generate a Mermaid diagram of the workflow."""
        lines = ["graph TD"]

        for node in self.nodes:
            label = node.display_name(language).replace('"', "'")
            if node.type == NodeType.START.value:
                lines.append(f'    {_mermaid_id(node.id)}(["{label}"])')
            elif node.type == NodeType.END.value:
                lines.append(f'    {_mermaid_id(node.id)}(("{label}"))')
            elif node.type == NodeType.DECISION.value:
                lines.append(f'    {_mermaid_id(node.id)}{{"{label}"}}')
            elif node.type == NodeType.HUMAN.value:
                lines.append(f'    {_mermaid_id(node.id)}[/"{label}"/]')
            else:
                lines.append(f'    {_mermaid_id(node.id)}["{label}"]')

        for edge in self.edges:
            source, target = _mermaid_id(edge.source), _mermaid_id(edge.target)
            if edge.is_conditional:
                lines.append(f"    {source} -->|{_edge_label(edge)}| {target}")
            else:
                lines.append(f"    {source} --> {target}")

        return "\n".join(lines)


def _mermaid_id(node_id: str) -> str:
    return node_id.replace("-", "_").replace(" ", "_")


def _edge_label(edge: Edge) -> str:
    condition = edge.condition
    if condition.type == ConditionType.EXPRESSION.value:
        return "expr"
    if condition.type in (ConditionType.EQUALS.value, ConditionType.NOT_EQUALS.value):
        return str(condition.value)
    return condition.type
