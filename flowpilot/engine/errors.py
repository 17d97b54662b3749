"""
Shared exception hierarchy for the workflow engine.

Every engine error carries a stable ``code`` that is copied into the
execution's error records, plus the id of the node involved when known.
"""

from typing import Any, Dict, List, Optional


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""

    code = "EXECUTION_ERROR"

    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.node_id = node_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "nodeId": self.node_id,
        }


class WorkflowValidationError(WorkflowError):
    """Raised before any state exists or changes: bad definition, bad input, bad response."""

    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        details: Optional[List[str]] = None
    ):
        super().__init__(message, node_id)
        self.details = details or []

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidResponseError(WorkflowValidationError):
    """Raised when a human response does not match the checkpoint."""


class GraphError(WorkflowError):
    """Raised when traversal cannot continue because of the graph shape."""

    code = "GRAPH_ERROR"


class NoMatchingEdgeError(GraphError):
    """No outgoing edge matched for a non-terminal node."""

    code = "NO_MATCHING_EDGE"


class UnknownNodeTypeError(GraphError):
    """No executor is registered for the node's type."""

    code = "UNKNOWN_NODE_TYPE"


class NodeNotFoundError(GraphError):
    """An edge or pointer references a node id that does not exist."""

    code = "NODE_NOT_FOUND"


class IterationLimitError(WorkflowError):
    """The execution took more steps than ``config.maxIterations`` allows."""

    code = "MAX_ITERATIONS_EXCEEDED"


# Name used in workflow documentation and error payloads
MaxIterationsExceeded = IterationLimitError


class ExternalCallError(WorkflowError):
    """A completion service or tool call failed."""

    code = "EXTERNAL_CALL_FAILED"


class NodeTimeoutError(ExternalCallError):
    """A node's external call did not finish within its timeout."""

    code = "NODE_TIMEOUT"


class StaleCheckpointError(WorkflowError):
    """Resume attempted against a checkpoint that is no longer pending."""

    code = "STALE_CHECKPOINT"


class ExecutionNotFoundError(WorkflowError):
    """No execution exists for the given id."""

    code = "EXECUTION_NOT_FOUND"


class ExpressionError(WorkflowError):
    """An expression could not be parsed or evaluated safely."""

    code = "EXPRESSION_ERROR"


class StateSizeError(WorkflowError):
    """Serialized execution state exceeds the configured size limit."""

    code = "STATE_TOO_LARGE"
