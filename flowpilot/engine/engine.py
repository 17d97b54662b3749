"""
Async Workflow Engine.

Drives executions of workflow definitions: validates, creates state, runs
nodes one step at a time, follows edges, pauses at human checkpoints and
resumes from them.

The traversal is an explicit loop. Each step reads the persisted state,
executes one node and commits the outcome through the StateManager, so an
execution can stop after any step (pause, cancel, crash) and be continued
later from nothing but its stored state.
"""

from typing import Any, Callable, Dict, List, Optional, Union
from datetime import datetime
import asyncio
import inspect
import logging
import time

from pydantic import BaseModel, Field

from flowpilot.config import Settings, settings as default_settings
from flowpilot.engine.conditions import build_scope, select_edge
from flowpilot.engine.definition import Node, NodeType, WorkflowDefinition
from flowpilot.engine.errors import (
    ExecutionNotFoundError,
    ExternalCallError,
    GraphError,
    IterationLimitError,
    NodeNotFoundError,
    NodeTimeoutError,
    StaleCheckpointError,
    UnknownNodeTypeError,
    WorkflowError,
    WorkflowValidationError,
)
from flowpilot.engine.executors import NodeExecutor, NodeResult, build_executors
from flowpilot.engine.executors.human import HumanExecutor
from flowpilot.engine.executors.start import StartExecutor
from flowpilot.engine.registry import ExecutionRecord, ExecutionRegistry
from flowpilot.engine.services import CompletionService, ExecutionServices, ToolInvoker
from flowpilot.engine.state import (
    ExecutionState,
    ExecutionStatus,
    StateManager,
    StepRecord,
)


logger = logging.getLogger(__name__)

# Node types whose failures are subject to the onError policy
EXTERNAL_NODE_TYPES = (NodeType.AGENT.value, NodeType.TOOL.value)

EventListener = Callable[[str, Dict[str, Any]], Any]
WorkflowLike = Union[WorkflowDefinition, Dict[str, Any]]


class HumanResponse(BaseModel):
    """A human's answer to a pending checkpoint."""

    checkpoint_id: str = Field(alias="checkpointId")
    response: str
    data: Optional[Dict[str, Any]] = None

    class Config:
        populate_by_name = True


class WorkflowEngine:
    """
    Workflow execution engine.

    Usage:
        engine = WorkflowEngine(completion=my_llm, tools=tool_registry)
        state = await engine.start(definition, {"topic": "solar"}, {"user": "u1"})
        if state.status == "paused":
            state = await engine.resume(
                state.execution_id,
                {"checkpointId": state.pending_checkpoint.id, "response": "approve"},
            )
    """

    def __init__(
        self,
        state_manager: Optional[StateManager] = None,
        registry: Optional[ExecutionRegistry] = None,
        completion: Optional[CompletionService] = None,
        tools: Optional[ToolInvoker] = None,
        config: Optional[Settings] = None,
    ):
        """
        Initialize the engine.

        Args:
            state_manager: State manager (in-memory store if not provided)
            registry: Execution registry (a fresh one if not provided)
            completion: LLM completion service for agent nodes
            tools: Tool invoker for tool nodes and agent tool use
            config: Settings (global settings if not provided)
        """
        self.settings = config or default_settings
        if state_manager is None:
            from flowpilot.storage import create_state_store

            state_manager = StateManager(
                create_state_store(self.settings),
                max_state_size=self.settings.MAX_STATE_SIZE_BYTES,
            )
        self.state_manager = state_manager
        self.registry = registry or ExecutionRegistry()
        self.completion = completion
        self.tools = tools

        # Closed dispatch table, fixed for the engine's lifetime
        self._executors: Dict[str, NodeExecutor] = build_executors()

        self._tasks: Dict[str, asyncio.Task] = {}
        self._listeners: List[EventListener] = []

    # ============================================================
    # Events
    # ============================================================

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """
        Register an event listener.

        Listeners receive ``(event_name, payload)`` and may be sync or async.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(self, event: str, state: ExecutionState, **extra: Any) -> None:
        payload = {
            "event": event,
            "executionId": state.execution_id,
            "workflowId": state.workflow_id,
            "status": state.status,
            "timestamp": datetime.now().isoformat(),
        }
        payload.update(extra)

        for listener in list(self._listeners):
            try:
                result = listener(event, payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Event listener failed for {event}: {e}")

    # ============================================================
    # Validation
    # ============================================================

    def validate(self, definition: WorkflowLike) -> WorkflowDefinition:
        """
        Load and validate a workflow definition.

        Args:
            definition: Definition model or JSON document

        Returns:
            The validated definition

        Raises:
            WorkflowValidationError: If the definition is malformed
        """
        if isinstance(definition, WorkflowDefinition):
            workflow = definition
        else:
            try:
                workflow = WorkflowDefinition.from_dict(definition)
            except ValueError as e:
                raise WorkflowValidationError(f"Malformed workflow definition: {e}") from e

        errors = workflow.validate_structure()
        if not errors:
            for node in workflow.nodes:
                executor = self._executors.get(node.type)
                if executor is not None:
                    errors.extend(executor.validate_config(node))

        if errors:
            raise WorkflowValidationError(
                f"Workflow '{workflow.id}' is invalid: {errors[0]}",
                details=errors,
            )
        return workflow

    # ============================================================
    # Public operations
    # ============================================================

    async def start(
        self,
        definition: WorkflowLike,
        input: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
        background: bool = False,
    ) -> ExecutionState:
        """
        Start a new execution.

        Validation happens before any state is created: an invalid
        definition or missing required input raises and leaves nothing
        behind.

        Args:
            definition: Workflow definition model or document
            input: Execution input, checked against the start node
            context: ``{"language": ..., "user": ...}``
            background: Return right after creation and run in a task

        Returns:
            The final (paused or terminal) state, or the freshly started
            state when ``background`` is True

        Raises:
            WorkflowValidationError: If the definition or input is invalid
        """
        workflow = self.validate(definition)
        input_data = dict(input or {})
        start_node = workflow.start_node
        StartExecutor.validate_inputs(start_node, input_data)

        ctx = {"language": "en", "user": None}
        ctx.update(context or {})

        state = await self.state_manager.create(
            workflow_id=workflow.id,
            input=input_data,
            context=ctx,
            definition=workflow.to_dict(),
        )
        await self.registry.register(
            state.execution_id,
            workflow.id,
            user_id=ctx.get("user"),
            workflow_name=workflow.name,
        )

        def _begin(s: ExecutionState) -> None:
            s.status = ExecutionStatus.RUNNING.value
            s.current_node = start_node.id
            s.started_at = datetime.now()

        state = await self.state_manager.mutate(state.execution_id, _begin)
        await self.registry.sync(state)

        logger.info(f"Starting execution {state.execution_id} of workflow '{workflow.id}'")
        await self._emit("workflow.start", state)

        task = self._launch(state.execution_id, workflow)
        if background:
            return state
        return await task

    async def resume(
        self,
        execution_id: str,
        human_response: Union[HumanResponse, Dict[str, Any]],
        workflow: Optional[WorkflowLike] = None,
        background: bool = False,
    ) -> ExecutionState:
        """
        Resume a paused execution with a human response.

        The check that the execution is paused on exactly this checkpoint,
        the response validation and the state change happen in one atomic
        update: a rejected resume leaves the state untouched.

        Args:
            execution_id: Paused execution
            human_response: ``{"checkpointId", "response", "data"}``
            workflow: Definition to continue with (stored snapshot if omitted)
            background: Return right after the response is applied

        Returns:
            The next paused or terminal state (or the running state in
            background mode)

        Raises:
            ExecutionNotFoundError: If the execution does not exist
            StaleCheckpointError: If it is not paused on that checkpoint
            InvalidResponseError: If the response or its data is invalid
        """
        if not isinstance(human_response, HumanResponse):
            try:
                human_response = HumanResponse.model_validate(human_response)
            except ValueError as e:
                raise WorkflowValidationError(f"Malformed human response: {e}") from e

        current = await self.state_manager.get(execution_id)
        if current is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found")
        definition = self._definition_for(current, workflow)
        human: HumanExecutor = self._executors[NodeType.HUMAN.value]
        routing_errors: List[Optional[GraphError]] = []

        def _apply(s: ExecutionState) -> None:
            checkpoint = s.pending_checkpoint
            if (
                s.status != ExecutionStatus.PAUSED.value
                or checkpoint is None
                or checkpoint.id != human_response.checkpoint_id
            ):
                raise StaleCheckpointError(
                    f"Checkpoint {human_response.checkpoint_id} is not pending "
                    f"for execution {execution_id} (status: {s.status})",
                    node_id=checkpoint.node_id if checkpoint else None,
                )

            node = definition.get_node(checkpoint.node_id)
            if node is None:
                raise NodeNotFoundError(
                    f"Paused node '{checkpoint.node_id}' not found in workflow",
                    node_id=checkpoint.node_id,
                )

            result = human.resume(node, checkpoint, human_response.response, human_response.data)

            s.pending_checkpoint = None
            s.status = ExecutionStatus.RUNNING.value
            s.data.update(result.output)
            s.node_outputs[node.id] = result.value
            routing_errors.append(self._route(s, definition, node, result))

        state = await self.state_manager.mutate(execution_id, _apply)
        await self.registry.sync(state)

        logger.info(
            f"Resumed execution {execution_id} with response '{human_response.response}'"
        )
        await self._emit(
            "workflow.resumed",
            state,
            checkpointId=human_response.checkpoint_id,
            response=human_response.response,
        )
        if routing_errors and routing_errors[0] is not None:
            await self._emit(
                "workflow.node.error",
                state,
                nodeId=state.current_node,
                error=routing_errors[0].to_dict(),
            )
        if state.is_terminal:
            await self._emit_terminal(state)
            return state

        task = self._launch(execution_id, definition)
        if background:
            return state
        return await task

    async def get_state(self, execution_id: str) -> Optional[ExecutionState]:
        """Get a copy of an execution's state, or None if unknown."""
        return await self.state_manager.get(execution_id)

    async def cancel(self, execution_id: str) -> None:
        """
        Cancel an execution.

        Marks it cancelled (dropping any pending checkpoint) and cancels the
        in-flight task so a running agent or tool call is interrupted.
        Cancelling a finished execution does nothing.

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        changed = []

        def _apply(s: ExecutionState) -> None:
            if s.is_terminal:
                return
            s.status = ExecutionStatus.CANCELLED.value
            s.pending_checkpoint = None
            s.completed_at = datetime.now()
            changed.append(True)

        state = await self.state_manager.mutate(execution_id, _apply)
        if not changed:
            logger.info(f"Execution {execution_id} already finished with status '{state.status}'")
            return

        await self.registry.sync(state)

        task = self._tasks.get(execution_id)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        logger.info(f"Cancelled execution {execution_id}")
        await self._emit("workflow.cancelled", state)

    async def list_executions(
        self,
        user: Optional[str] = None,
        status: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[ExecutionRecord]:
        """List execution summaries from the registry."""
        return await self.registry.list(user_id=user, status=status, offset=offset, limit=limit)

    async def remove(self, execution_id: str) -> bool:
        """Cancel if still active, then delete the execution entirely."""
        state = await self.state_manager.get(execution_id)
        if state is None:
            return await self.registry.remove(execution_id)
        if not state.is_terminal:
            await self.cancel(execution_id)
            await self.wait(execution_id)
        await self.registry.remove(execution_id)
        return await self.state_manager.delete(execution_id)

    async def wait(self, execution_id: str) -> Optional[ExecutionState]:
        """Wait for a background run to stop (pause or finish) and return its state."""
        task = self._tasks.get(execution_id)
        if task is not None and not task.done():
            await asyncio.wait({task})
        return await self.state_manager.get(execution_id)

    async def recover(self) -> int:
        """Rebuild the registry from persisted states, e.g. after a restart."""
        states = []
        for execution_id in await self.state_manager.list_ids():
            state = await self.state_manager.get(execution_id)
            if state is not None:
                states.append(state)
        return await self.registry.rebuild(states)

    # ============================================================
    # Traversal
    # ============================================================

    def _definition_for(
        self,
        state: ExecutionState,
        workflow: Optional[WorkflowLike],
    ) -> WorkflowDefinition:
        if workflow is not None:
            return self.validate(workflow)
        if state.definition is None:
            raise WorkflowValidationError(
                f"Execution {state.execution_id} has no stored workflow definition"
            )
        return WorkflowDefinition.from_dict(state.definition)

    def _services(self, state: ExecutionState) -> ExecutionServices:
        return ExecutionServices(
            completion=self.completion,
            tools=self.tools,
            language=state.language,
            user=state.user,
            agent_max_iterations=self.settings.AGENT_MAX_ITERATIONS,
            error_policy=self.settings.DEFAULT_ERROR_POLICY,
        )

    def _launch(self, execution_id: str, workflow: WorkflowDefinition) -> "asyncio.Task[ExecutionState]":
        task = asyncio.create_task(self._run(execution_id, workflow))
        self._tasks[execution_id] = task

        def _done(t: asyncio.Task) -> None:
            if self._tasks.get(execution_id) is t:
                del self._tasks[execution_id]

        task.add_done_callback(_done)
        return task

    async def _run(self, execution_id: str, workflow: WorkflowDefinition) -> ExecutionState:
        """Step until the execution is no longer running."""
        try:
            while True:
                state = await self.state_manager.get(execution_id)
                if state is None or state.status != ExecutionStatus.RUNNING.value:
                    return state
                await self._step(state, workflow)

        except asyncio.CancelledError:
            state = await self.state_manager.get(execution_id)
            if state is not None and state.status == ExecutionStatus.CANCELLED.value:
                logger.info(f"Execution {execution_id} stopped after cancellation")
                return state
            raise

        except WorkflowError as e:
            logger.error(f"Execution {execution_id} failed: [{e.code}] {e.message}")
            return await self._fail(execution_id, e)

        except Exception as e:
            logger.exception(f"Execution {execution_id} failed unexpectedly: {e}")
            return await self._fail(execution_id, WorkflowError(str(e)))

    def _max_iterations(self, workflow: WorkflowDefinition) -> int:
        return workflow.config.max_iterations or self.settings.MAX_ITERATIONS

    def _timeout_for(self, node: Node) -> float:
        """Seconds a node may run; definitions give milliseconds."""
        timeout_ms = node.timeout
        if timeout_ms is None and node.type in EXTERNAL_NODE_TYPES:
            timeout_ms = node.config.get("timeout")
        if timeout_ms:
            return float(timeout_ms) / 1000.0
        return float(self.settings.NODE_TIMEOUT_SECONDS)

    def _error_policy(self, node: Node, services: ExecutionServices) -> str:
        if node.config.get("onError"):
            return node.config["onError"]
        if node.config.get("optional"):
            return "continue"
        return services.error_policy

    async def _step(self, state: ExecutionState, workflow: WorkflowDefinition) -> None:
        """Execute the current node and commit its outcome."""
        execution_id = state.execution_id
        node_id = state.current_node
        limit = self._max_iterations(workflow)

        def _count(s: ExecutionState) -> None:
            if s.status != ExecutionStatus.RUNNING.value:
                return
            if s.iterations + 1 > limit:
                raise IterationLimitError(
                    f"Max iterations ({limit}) exceeded at node '{node_id}'",
                    node_id=node_id,
                )
            s.iterations += 1

        state = await self.state_manager.mutate(execution_id, _count)
        if state.status != ExecutionStatus.RUNNING.value:
            return

        node = workflow.get_node(node_id) if node_id else None
        if node is None:
            raise NodeNotFoundError(f"Node '{node_id}' not found in workflow", node_id=node_id)
        executor = self._executors.get(node.type)
        if executor is None:
            raise UnknownNodeTypeError(
                f"No executor for node type '{node.type}' (node '{node.id}')",
                node_id=node.id,
            )

        services = self._services(state)
        step = StepRecord(
            step=state.iterations,
            node_id=node.id,
            node_type=node.type,
            started_at=datetime.now(),
        )
        started = time.time()

        logger.info(f"Executing node: {node.id} ({node.type}, step {step.step}) in {execution_id}")
        await self._emit("workflow.node.start", state, nodeId=node.id, nodeType=node.type)

        try:
            result = await self._execute(executor, node, state, services)
        except WorkflowError as e:
            step.result = "error"
            step.error = e.message
            step.completed_at = datetime.now()
            step.duration_ms = (time.time() - started) * 1000
            await self._record_step(execution_id, step)
            await self._emit("workflow.node.error", state, nodeId=node.id, error=e.to_dict())
            raise

        step.completed_at = datetime.now()
        step.duration_ms = (time.time() - started) * 1000
        step.branch = result.branch
        step.result = "paused" if result.checkpoint else ("error" if result.error else "success")

        committed = []

        def _commit(s: ExecutionState) -> None:
            # Cancelled while the node was running: drop the result
            if s.status != ExecutionStatus.RUNNING.value:
                return
            s.completed_nodes.append(node.id)
            s.data.update(result.output)
            s.node_outputs[node.id] = result.value
            s.history.append(step)
            if result.error:
                s.add_error(ExternalCallError.code, result.error, node.id)
            routing_error = self._route(s, workflow, node, result)
            if routing_error is not None:
                step.result = "error"
                step.error = routing_error.message
            committed.append(routing_error)

        state = await self.state_manager.mutate(execution_id, _commit)
        if not committed:
            return
        await self.registry.sync(state)

        routing_error = committed[0]
        if routing_error is not None:
            await self._emit("workflow.node.error", state, nodeId=node.id, error=routing_error.to_dict())
        else:
            await self._emit(
                "workflow.node.complete",
                state,
                nodeId=node.id,
                nodeType=node.type,
                branch=result.branch,
                durationMs=step.duration_ms,
            )

        if state.status == ExecutionStatus.PAUSED.value and state.pending_checkpoint:
            checkpoint = state.pending_checkpoint.model_dump(mode="json", by_alias=True)
            logger.info(f"Execution {execution_id} paused at node '{node.id}'")
            await self._emit("workflow.human.required", state, nodeId=node.id, checkpoint=checkpoint)
            await self._emit("workflow.paused", state, nodeId=node.id, checkpoint=checkpoint)
        elif state.is_terminal:
            await self._emit_terminal(state)

    async def _execute(
        self,
        executor: NodeExecutor,
        node: Node,
        state: ExecutionState,
        services: ExecutionServices,
    ) -> NodeResult:
        """Run one executor under its timeout and apply the node's error policy."""
        timeout = self._timeout_for(node)
        try:
            try:
                return await asyncio.wait_for(executor.execute(node, state, services), timeout)
            except asyncio.TimeoutError as e:
                raise NodeTimeoutError(
                    f"Node '{node.id}' timed out after {timeout:g}s",
                    node_id=node.id,
                ) from e
        except ExternalCallError as e:
            if node.type not in EXTERNAL_NODE_TYPES or self._error_policy(node, services) != "continue":
                raise
            logger.warning(f"Node '{node.id}' failed, continuing per error policy: {e.message}")
            marker = {"error": True, "message": e.message, "nodeId": node.id}
            output_variable = node.config.get("outputVariable")
            return NodeResult(
                output={output_variable: marker} if output_variable else {},
                value=marker,
                branch="error",
                error=e.message,
            )
        except WorkflowError:
            raise
        except Exception as e:
            raise WorkflowError(f"Node '{node.id}' failed: {e}", node_id=node.id) from e

    def _route(
        self,
        state: ExecutionState,
        workflow: WorkflowDefinition,
        node: Node,
        result: NodeResult,
    ) -> Optional[GraphError]:
        """
        Apply a node result's control-flow outcome to ``state`` (in place).

        Returns the routing error if no outgoing edge matched; the state is
        then already marked failed.
        """
        if result.checkpoint is not None:
            state.pending_checkpoint = result.checkpoint
            state.status = ExecutionStatus.PAUSED.value
            state.current_node = node.id
            return None

        if result.terminal:
            state.status = result.status or ExecutionStatus.COMPLETED.value
            state.output = result.value if isinstance(result.value, dict) else {"result": result.value}
            state.current_node = node.id
            state.completed_at = datetime.now()
            return None

        scope = build_scope(result.condition_scope(), state.data, state.node_outputs)
        try:
            edge = select_edge(node.id, workflow.outgoing_edges(node.id), scope)
        except GraphError as e:
            state.add_error(e.code, e.message, node.id)
            state.status = ExecutionStatus.FAILED.value
            state.completed_at = datetime.now()
            return e
        state.current_node = edge.target
        return None

    async def _record_step(self, execution_id: str, step: StepRecord) -> None:
        def _apply(s: ExecutionState) -> None:
            s.history.append(step)

        await self.state_manager.mutate(execution_id, _apply)

    async def _fail(self, execution_id: str, error: WorkflowError) -> Optional[ExecutionState]:
        def _apply(s: ExecutionState) -> None:
            if s.is_terminal:
                return
            s.add_error(error.code, error.message, error.node_id or s.current_node)
            s.status = ExecutionStatus.FAILED.value
            s.pending_checkpoint = None
            s.completed_at = datetime.now()

        try:
            state = await self.state_manager.mutate(execution_id, _apply)
        except ExecutionNotFoundError:
            return None
        await self.registry.sync(state)
        await self._emit_terminal(state)
        return state

    async def _emit_terminal(self, state: ExecutionState) -> None:
        if state.status == ExecutionStatus.FAILED.value:
            errors = [e.model_dump(mode="json", by_alias=True) for e in state.errors]
            await self._emit("workflow.failed", state, errors=errors)
        elif state.status == ExecutionStatus.CANCELLED.value:
            await self._emit("workflow.cancelled", state)
        else:
            logger.info(f"Execution {state.execution_id} finished with status '{state.status}'")
            await self._emit("workflow.complete", state, output=state.output)
