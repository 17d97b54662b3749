"""
WebSocket Routes for Real-time Execution Streaming.

Clients subscribe to one execution and receive every engine event for it
(node start/complete, human checkpoint, terminal status) as it happens.
"""

from typing import Any, Dict, Set
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import logging

from flowpilot.engine.state import is_terminal_status


logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])


class ConnectionManager:
    """Manages WebSocket connections per execution."""

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, execution_id: str):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        if execution_id not in self.active_connections:
            self.active_connections[execution_id] = set()
        self.active_connections[execution_id].add(websocket)
        logger.info(f"WebSocket connected for execution: {execution_id}")

    def disconnect(self, websocket: WebSocket, execution_id: str):
        """Remove a WebSocket connection."""
        if execution_id in self.active_connections:
            self.active_connections[execution_id].discard(websocket)
            if not self.active_connections[execution_id]:
                del self.active_connections[execution_id]
        logger.info(f"WebSocket disconnected for execution: {execution_id}")

    async def broadcast(self, execution_id: str, message: Dict[str, Any]):
        """Send a message to all connections for an execution."""
        if execution_id not in self.active_connections:
            return

        disconnected = set()
        for websocket in list(self.active_connections[execution_id]):
            try:
                await websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"Dropping WebSocket for {execution_id}: {e}")
                disconnected.add(websocket)

        for ws in disconnected:
            self.disconnect(ws, execution_id)

    async def on_engine_event(self, event: str, payload: Dict[str, Any]):
        """Engine listener: forward events to the execution's subscribers."""
        execution_id = payload.get("executionId")
        if execution_id:
            await self.broadcast(execution_id, {"type": "event", **payload})


@router.websocket("/ws/executions/{execution_id}")
async def websocket_execution(websocket: WebSocket, execution_id: str):
    """
    WebSocket endpoint streaming events of one execution.

    On connect the current state is sent as a snapshot; afterwards every
    engine event for the execution is pushed.

    Message format (server -> client):
    ```json
    {"type": "snapshot", "state": {...}}
    {"type": "event", "event": "workflow.node.complete", "executionId": "...", "nodeId": "..."}
    ```

    Clients may send ``{"action": "state"}`` to get a fresh snapshot.
    """
    engine = websocket.app.state.engine
    manager: ConnectionManager = websocket.app.state.connections

    state = await engine.get_state(execution_id)
    if state is None:
        await websocket.close(code=4004, reason=f"Execution '{execution_id}' not found")
        return

    await manager.connect(websocket, execution_id)
    try:
        await websocket.send_json({"type": "snapshot", "state": state.to_dict()})

        while True:
            message = await websocket.receive_json()
            if isinstance(message, dict) and message.get("action") == "state":
                state = await engine.get_state(execution_id)
                if state is None:
                    await websocket.send_json({"type": "error", "error": "Execution was removed"})
                    break
                await websocket.send_json({
                    "type": "snapshot",
                    "state": state.to_dict(),
                    "terminal": is_terminal_status(state.status),
                })
            else:
                await websocket.send_json({
                    "type": "error",
                    "error": "Unknown action, expected {\"action\": \"state\"}",
                })

    except WebSocketDisconnect:
        logger.info(f"Client disconnected from execution {execution_id}")
    finally:
        manager.disconnect(websocket, execution_id)
