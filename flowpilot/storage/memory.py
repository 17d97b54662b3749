"""
In-Memory Storage for FlowPilot.

Provides async-safe storage for workflow definitions and execution state
documents. Either store can be replaced with a database implementation.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
from copy import deepcopy
import asyncio
from dataclasses import dataclass, field

from flowpilot.engine.definition import WorkflowDefinition


@dataclass
class StoredWorkflow:
    """A stored workflow definition."""
    workflow_id: str
    definition: WorkflowDefinition
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "name": self.definition.display_name(),
            "definition": self.definition.to_dict(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class WorkflowStore:
    """
    Async-safe in-memory storage for workflow definitions.

    Definitions are stored by their id and are immutable once stored;
    saving under an existing id replaces the previous version.
    """

    def __init__(self):
        self._workflows: Dict[str, StoredWorkflow] = {}
        self._lock = asyncio.Lock()

    async def save(self, definition: WorkflowDefinition) -> StoredWorkflow:
        """
        Save a workflow definition.

        Args:
            definition: A validated workflow definition

        Returns:
            The stored workflow
        """
        async with self._lock:
            existing = self._workflows.get(definition.id)
            stored = StoredWorkflow(workflow_id=definition.id, definition=definition)
            if existing:
                stored.created_at = existing.created_at
            self._workflows[definition.id] = stored
            return stored

    async def get(self, workflow_id: str) -> Optional[StoredWorkflow]:
        """Get a workflow by ID."""
        async with self._lock:
            return self._workflows.get(workflow_id)

    async def delete(self, workflow_id: str) -> bool:
        """Delete a workflow."""
        async with self._lock:
            if workflow_id in self._workflows:
                del self._workflows[workflow_id]
                return True
            return False

    async def list_all(self) -> List[StoredWorkflow]:
        """List all stored workflows."""
        async with self._lock:
            return list(self._workflows.values())

    async def exists(self, workflow_id: str) -> bool:
        """Check if a workflow exists."""
        async with self._lock:
            return workflow_id in self._workflows

    def __len__(self) -> int:
        return len(self._workflows)


class MemoryStateStore:
    """
    Async-safe in-memory StateStore.

    Documents are deep-copied on the way in and out so stored state can
    never be modified through a reference held by a caller.
    """

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def save(self, execution_id: str, state: Dict[str, Any]) -> None:
        async with self._lock:
            self._documents[execution_id] = deepcopy(state)

    async def load(self, execution_id: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            document = self._documents.get(execution_id)
            return deepcopy(document) if document is not None else None

    async def delete(self, execution_id: str) -> bool:
        async with self._lock:
            return self._documents.pop(execution_id, None) is not None

    async def list_ids(self) -> List[str]:
        async with self._lock:
            return list(self._documents.keys())

    def __len__(self) -> int:
        return len(self._documents)
