"""
Workflows package - built-in workflow definitions.
"""

from flowpilot.workflows.library import (
    BUILTIN_WORKFLOWS,
    builtin_definitions,
    register_builtin_workflows,
)

__all__ = [
    "BUILTIN_WORKFLOWS",
    "builtin_definitions",
    "register_builtin_workflows",
]
