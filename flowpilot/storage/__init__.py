"""
Storage package - workflow definitions and execution state persistence.
"""

from flowpilot.storage.memory import (
    MemoryStateStore,
    StoredWorkflow,
    WorkflowStore,
)
from flowpilot.storage.file import FileStateStore


def create_state_store(config):
    """Build the StateStore selected by ``STATE_BACKEND``."""
    if config.STATE_BACKEND == "file":
        return FileStateStore(config.STATE_DIR)
    if config.STATE_BACKEND == "memory":
        return MemoryStateStore()
    raise ValueError(f"Unknown STATE_BACKEND: {config.STATE_BACKEND!r}")


__all__ = [
    "MemoryStateStore",
    "FileStateStore",
    "StoredWorkflow",
    "WorkflowStore",
    "create_state_store",
]
