"""
Execution Registry.

Keeps a lightweight summary of every execution (status, owner, current
node, pending checkpoint) for listing and lookup without loading full
state documents. The registry is an ordinary object created alongside the
engine; nothing here is module-global.
"""

from typing import Any, Dict, Iterable, List, Optional, Set
from dataclasses import dataclass, field
from datetime import datetime
import asyncio
import logging

from flowpilot.engine.state import ExecutionState, ExecutionStatus, is_terminal_status


logger = logging.getLogger(__name__)


@dataclass
class ExecutionRecord:
    """Summary of one execution."""
    execution_id: str
    workflow_id: str
    user_id: Optional[str] = None
    workflow_name: Any = None
    status: str = ExecutionStatus.PENDING.value
    current_node: Optional[str] = None
    pending_checkpoint: Optional[Dict[str, Any]] = None
    started_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "executionId": self.execution_id,
            "workflowId": self.workflow_id,
            "userId": self.user_id,
            "workflowName": self.workflow_name,
            "status": self.status,
            "currentNode": self.current_node,
            "pendingCheckpoint": self.pending_checkpoint,
            "startedAt": self.started_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


class ExecutionRegistry:
    """
    Async-safe index of executions.

    Records are copied on the way out so callers cannot modify the index.
    A per-user index supports listing a user's executions.
    """

    def __init__(self):
        self._records: Dict[str, ExecutionRecord] = {}
        self._by_user: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _copy(record: ExecutionRecord) -> ExecutionRecord:
        return ExecutionRecord(**record.__dict__)

    async def register(
        self,
        execution_id: str,
        workflow_id: str,
        user_id: Optional[str] = None,
        workflow_name: Any = None,
        status: str = ExecutionStatus.PENDING.value,
    ) -> ExecutionRecord:
        """
        Register a new execution.

        Args:
            execution_id: Execution identifier
            workflow_id: Workflow being executed
            user_id: Owner of the execution
            workflow_name: Display name (string or language map)
            status: Initial status

        Returns:
            A copy of the registered record
        """
        if not execution_id:
            raise ValueError("execution_id is required")
        if not workflow_id:
            raise ValueError("workflow_id is required")

        record = ExecutionRecord(
            execution_id=execution_id,
            workflow_id=workflow_id,
            user_id=user_id,
            workflow_name=workflow_name or workflow_id,
            status=status,
        )
        async with self._lock:
            self._records[execution_id] = record
            if user_id:
                self._by_user.setdefault(user_id, set()).add(execution_id)

        logger.info(f"Registered execution {execution_id} (workflow={workflow_id}, user={user_id})")
        return self._copy(record)

    async def update_status(
        self,
        execution_id: str,
        status: str,
        current_node: Optional[str] = None,
        pending_checkpoint: Optional[Dict[str, Any]] = None,
    ) -> Optional[ExecutionRecord]:
        """Update status and related fields. Returns None if not registered."""
        async with self._lock:
            record = self._records.get(execution_id)
            if record is None:
                logger.warning(f"Execution {execution_id} not found for status update")
                return None

            record.status = status
            record.updated_at = datetime.now()
            if current_node is not None:
                record.current_node = current_node
            record.pending_checkpoint = pending_checkpoint
            if is_terminal_status(status) and record.completed_at is None:
                record.completed_at = record.updated_at
            return self._copy(record)

    async def sync(self, state: ExecutionState) -> ExecutionRecord:
        """Bring the record in line with a state, registering it if needed."""
        checkpoint = (
            state.pending_checkpoint.model_dump(mode="json", by_alias=True)
            if state.pending_checkpoint
            else None
        )
        async with self._lock:
            record = self._records.get(state.execution_id)
            if record is None:
                record = ExecutionRecord(
                    execution_id=state.execution_id,
                    workflow_id=state.workflow_id,
                    user_id=state.user,
                    workflow_name=(state.definition or {}).get("name") or state.workflow_id,
                    started_at=state.created_at,
                )
                self._records[state.execution_id] = record
                if state.user:
                    self._by_user.setdefault(state.user, set()).add(state.execution_id)

            record.status = state.status
            record.current_node = state.current_node
            record.pending_checkpoint = checkpoint
            record.updated_at = state.updated_at
            record.completed_at = state.completed_at
            return self._copy(record)

    async def get(self, execution_id: str) -> Optional[ExecutionRecord]:
        """Get an execution record by ID."""
        async with self._lock:
            record = self._records.get(execution_id)
            return self._copy(record) if record else None

    async def list(
        self,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[ExecutionRecord]:
        """
        List executions, most recently started first.

        Args:
            user_id: Only executions owned by this user
            status: Only executions with this status
            offset: Skip the first N results
            limit: Maximum number of results

        Returns:
            Copies of the matching records
        """
        async with self._lock:
            if user_id is not None:
                ids = self._by_user.get(user_id, set())
                records = [self._records[i] for i in ids if i in self._records]
            else:
                records = list(self._records.values())

            if status:
                records = [r for r in records if r.status == status]

            records.sort(key=lambda r: r.started_at, reverse=True)

            if offset > 0:
                records = records[offset:]
            if limit is not None and limit > 0:
                records = records[:limit]

            return [self._copy(r) for r in records]

    async def get_active(self) -> List[ExecutionRecord]:
        """All running or paused executions."""
        async with self._lock:
            return [
                self._copy(r)
                for r in self._records.values()
                if r.status in (ExecutionStatus.RUNNING.value, ExecutionStatus.PAUSED.value)
            ]

    async def get_pending_checkpoints(self) -> List[ExecutionRecord]:
        """All paused executions waiting for a human response."""
        async with self._lock:
            return [
                self._copy(r)
                for r in self._records.values()
                if r.status == ExecutionStatus.PAUSED.value and r.pending_checkpoint
            ]

    async def remove(self, execution_id: str) -> bool:
        """Remove an execution. Returns False if not registered."""
        async with self._lock:
            record = self._records.pop(execution_id, None)
            if record is None:
                return False
            if record.user_id and record.user_id in self._by_user:
                self._by_user[record.user_id].discard(execution_id)
                if not self._by_user[record.user_id]:
                    del self._by_user[record.user_id]
            return True

    async def rebuild(self, states: Iterable[ExecutionState]) -> int:
        """Re-populate the registry from persisted states. Returns the count."""
        count = 0
        for state in states:
            await self.sync(state)
            count += 1
        logger.info(f"Rebuilt execution registry with {count} executions")
        return count

    def __len__(self) -> int:
        return len(self._records)
