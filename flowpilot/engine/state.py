"""
Execution State Management.

``ExecutionState`` is the single canonical record of a running workflow:
its data bag, traversal progress, pending checkpoint and error log. It is
fully serializable, so an execution can be paused in one process and
resumed in another.

``StateManager`` owns every mutation. Each read-modify-persist cycle is
serialized per execution id and works on a private copy that is only
committed once the change and its persistence succeed.
"""

from typing import Any, Callable, Dict, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
import asyncio
import json
import logging
import uuid
import weakref

from flowpilot.engine.errors import ExecutionNotFoundError, StateSizeError
from flowpilot.engine.services import StateStore


logger = logging.getLogger(__name__)


class ExecutionStatus(str, Enum):
    """Built-in execution statuses. End nodes may declare other terminal aliases."""
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (
    ExecutionStatus.PENDING.value,
    ExecutionStatus.RUNNING.value,
    ExecutionStatus.PAUSED.value,
)


def is_terminal_status(status: str) -> bool:
    """Any status other than pending, running or paused is terminal."""
    return status not in ACTIVE_STATUSES


class CheckpointOption(BaseModel):
    """A choice offered to the human at a checkpoint."""

    value: str
    label: Any = None
    style: str = "primary"
    description: Any = None


class Checkpoint(BaseModel):
    """A pending request for human input."""

    id: str = Field(default_factory=lambda: f"ckpt-{uuid.uuid4()}")
    node_id: str = Field(alias="nodeId")
    message: str = ""
    options: List[CheckpointOption] = Field(default_factory=list)
    input_schema: Optional[Dict[str, Any]] = Field(default=None, alias="inputSchema")
    show_data: List[str] = Field(default_factory=list, alias="showData")
    display_data: Dict[str, Any] = Field(default_factory=dict, alias="displayData")
    created_at: datetime = Field(default_factory=datetime.now, alias="createdAt")
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")

    class Config:
        populate_by_name = True

    def option_values(self) -> List[str]:
        return [option.value for option in self.options]


class ErrorRecord(BaseModel):
    """An error recorded against an execution."""

    code: str
    message: str
    node_id: Optional[str] = Field(default=None, alias="nodeId")
    timestamp: datetime = Field(default_factory=datetime.now)

    class Config:
        populate_by_name = True


class StepRecord(BaseModel):
    """A single step in the execution history."""

    step: int
    node_id: str = Field(alias="nodeId")
    node_type: str = Field(alias="nodeType")
    started_at: datetime = Field(alias="startedAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    duration_ms: Optional[float] = Field(default=None, alias="durationMs")
    result: str = "success"
    branch: Optional[str] = None
    error: Optional[str] = None

    class Config:
        populate_by_name = True


class ExecutionState(BaseModel):
    """
    The persisted state of one workflow execution.

    Attributes:
        execution_id: Unique execution identifier
        workflow_id: Id of the workflow being executed
        status: Current status (see ExecutionStatus, or an end-node alias)
        input: The input the execution was started with
        data: The variable bag nodes read from and write to
        completed_nodes: Node ids in order of completion (append-only)
        current_node: Node being executed, or the paused node
        iterations: Steps taken so far, checked against maxIterations
        node_outputs: Latest result value of each node
        pending_checkpoint: Set while waiting for a human response
        errors: Errors recorded during execution
        history: Per-step execution log
        output: Projection produced by the end node
        context: Language and user the execution was started with
        definition: Snapshot of the workflow document being executed
    """

    execution_id: str = Field(
        default_factory=lambda: f"wf-exec-{uuid.uuid4()}", alias="executionId"
    )
    workflow_id: str = Field(alias="workflowId")
    status: str = ExecutionStatus.PENDING.value
    input: Dict[str, Any] = Field(default_factory=dict)
    data: Dict[str, Any] = Field(default_factory=dict)
    completed_nodes: List[str] = Field(default_factory=list, alias="completedNodes")
    current_node: Optional[str] = Field(default=None, alias="currentNode")
    iterations: int = 0
    node_outputs: Dict[str, Any] = Field(default_factory=dict, alias="nodeOutputs")
    pending_checkpoint: Optional[Checkpoint] = Field(default=None, alias="pendingCheckpoint")
    errors: List[ErrorRecord] = Field(default_factory=list)
    history: List[StepRecord] = Field(default_factory=list)
    output: Optional[Dict[str, Any]] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    definition: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=datetime.now, alias="createdAt")
    updated_at: datetime = Field(default_factory=datetime.now, alias="updatedAt")
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")

    class Config:
        populate_by_name = True

    @property
    def is_terminal(self) -> bool:
        return is_terminal_status(self.status)

    @property
    def language(self) -> str:
        return self.context.get("language") or "en"

    @property
    def user(self) -> Optional[str]:
        return self.context.get("user")

    def resolution_scope(self) -> Dict[str, Any]:
        """Roots available to `$.` path expressions."""
        return {
            "data": self.data,
            "input": self.input,
            "nodeOutputs": self.node_outputs,
            "executionId": self.execution_id,
            "workflowId": self.workflow_id,
            "context": self.context,
            "metadata": {
                "executionId": self.execution_id,
                "workflowId": self.workflow_id,
                "status": self.status,
                "iterations": self.iterations,
                "completedNodes": self.completed_nodes,
            },
        }

    def add_error(self, code: str, message: str, node_id: Optional[str] = None) -> ErrorRecord:
        record = ErrorRecord(code=code, message=message, node_id=node_id)
        self.errors.append(record)
        return record

    def copy_state(self) -> "ExecutionState":
        """Deep copy, so callers never share mutable structures with the store."""
        return self.model_copy(deep=True)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionState":
        return cls.model_validate(data)


class StateManager:
    """
    Manages execution state: creation, reads and atomic mutation.

    The StateStore is the only source of truth. Every read and mutation
    loads the current document from the store, so several managers (or
    processes) sharing one store see each other's commits.

    Usage:
        manager = StateManager(MemoryStateStore())
        state = await manager.create("my-workflow", data={"x": 1})
        state = await manager.mutate(state.execution_id, lambda s: s.data.update(y=2))
    """

    def __init__(self, store: StateStore, max_state_size: Optional[int] = None):
        """
        Initialize the state manager.

        Args:
            store: Backend used to persist state documents
            max_state_size: Maximum serialized size in bytes (no limit if None)
        """
        self.store = store
        self.max_state_size = max_state_size
        # Entries vanish once no coroutine holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, execution_id: str) -> asyncio.Lock:
        lock = self._locks.get(execution_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[execution_id] = lock
        return lock

    async def _persist(self, state: ExecutionState) -> None:
        document = state.to_dict()
        if self.max_state_size is not None:
            size = len(json.dumps(document, default=str).encode("utf-8"))
            if size > self.max_state_size:
                raise StateSizeError(
                    f"State for execution {state.execution_id} is {size} bytes, "
                    f"limit is {self.max_state_size}"
                )
        await self.store.save(state.execution_id, document)

    async def _load(self, execution_id: str) -> Optional[ExecutionState]:
        document = await self.store.load(execution_id)
        if document is None:
            return None
        return ExecutionState.from_dict(document)

    async def create(
        self,
        workflow_id: str,
        data: Optional[Dict[str, Any]] = None,
        input: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
        definition: Optional[Dict[str, Any]] = None,
        execution_id: Optional[str] = None,
    ) -> ExecutionState:
        """
        Create and persist a new execution state.

        Args:
            workflow_id: Id of the workflow being executed
            data: Initial data bag
            input: Input the execution was started with
            context: Language and user of the caller
            definition: Workflow document snapshot
            execution_id: Explicit id (generated if not provided)

        Returns:
            A copy of the created state
        """
        fields: Dict[str, Any] = {
            "workflow_id": workflow_id,
            "data": dict(data or {}),
            "input": dict(input or {}),
            "context": dict(context or {}),
            "definition": definition,
        }
        if execution_id:
            fields["execution_id"] = execution_id
        state = ExecutionState(**fields)

        async with self._lock_for(state.execution_id):
            await self._persist(state)

        logger.info(f"Created execution state {state.execution_id} for workflow {workflow_id}")
        return state.copy_state()

    async def get(self, execution_id: str) -> Optional[ExecutionState]:
        """Load the current state from the store, or None if unknown."""
        async with self._lock_for(execution_id):
            return await self._load(execution_id)

    async def mutate(
        self,
        execution_id: str,
        fn: Callable[[ExecutionState], Any],
    ) -> ExecutionState:
        """
        Atomically apply ``fn`` to the state and persist the result.

        The state is re-read from the store under the execution's lock, so
        ``fn`` always sees the latest committed document. ``fn`` may modify
        it in place. If ``fn`` or persistence raises, nothing is committed
        and the error propagates.

        Args:
            execution_id: Execution to modify
            fn: Mutation function

        Returns:
            The committed state

        Raises:
            ExecutionNotFoundError: If no such execution exists
        """
        async with self._lock_for(execution_id):
            working = await self._load(execution_id)
            if working is None:
                raise ExecutionNotFoundError(f"Execution {execution_id} not found")

            fn(working)
            working.updated_at = datetime.now()

            await self._persist(working)
            return working

    async def delete(self, execution_id: str) -> bool:
        """Delete an execution's state from the store."""
        async with self._lock_for(execution_id):
            return await self.store.delete(execution_id)

    async def list_ids(self) -> List[str]:
        """Ids of all stored executions."""
        return sorted(await self.store.list_ids())
