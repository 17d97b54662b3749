"""
Tests for the FastAPI endpoints.
"""

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport
from starlette.websockets import WebSocketDisconnect

from flowpilot.main import create_app
from flowpilot.storage.memory import WorkflowStore
from flowpilot.workflows.library import register_builtin_workflows


@pytest.fixture
def client(engine, tools):
    """Test client around a fresh engine; entering it runs the lifespan."""
    app = create_app(engine=engine, workflow_store=WorkflowStore(), tools_registry=tools)
    with TestClient(app) as test_client:
        yield test_client


def start(client, workflow_id, input, **extra):
    return client.post(f"/workflows/{workflow_id}/executions", json={"input": input, **extra})


# ============================================================
# Root Endpoints
# ============================================================

class TestRootEndpoints:
    """Tests for root endpoints."""

    def test_root(self, client):
        """Test root endpoint."""
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert data["name"] == "FlowPilot"
        assert "version" in data
        assert "executions" in data["endpoints"]

    def test_health(self, client):
        """Builtin workflows are registered at startup."""
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["workflows_count"] == 5
        assert data["executions_count"] == 0


# ============================================================
# Workflow Endpoints
# ============================================================

class TestWorkflowEndpoints:
    """Tests for workflow endpoints."""

    def test_list_workflows(self, client):
        response = client.get("/workflows", params={"language": "de"})
        assert response.status_code == 200

        data = response.json()
        names = {w["workflow_id"]: w["name"] for w in data["workflows"]}
        assert data["total"] == 5
        assert names["content-approval"] == "Inhaltsfreigabe"

    def test_get_workflow(self, client):
        response = client.get("/workflows/iterative-research")
        assert response.status_code == 200

        data = response.json()
        assert data["allow_cycles"] is True
        assert data["max_iterations"] == 20
        assert data["definition"]["id"] == "iterative-research"
        assert data["mermaid_diagram"].startswith("graph TD")

    def test_get_workflow_not_found(self, client):
        response = client.get("/workflows/nonexistent")
        assert response.status_code == 404

    def test_create_and_delete_workflow(self, client, linear_workflow):
        linear_workflow["id"] = "my-linear"

        response = client.post("/workflows", json=linear_workflow)
        assert response.status_code == 201
        assert response.json()["node_count"] == 3

        assert client.get("/workflows/my-linear").status_code == 200
        assert client.delete("/workflows/my-linear").status_code == 204
        assert client.delete("/workflows/my-linear").status_code == 404

    def test_create_invalid_workflow(self, client, linear_workflow):
        linear_workflow["nodes"] = linear_workflow["nodes"][1:]

        response = client.post("/workflows", json=linear_workflow)
        assert response.status_code == 400

        detail = response.json()["detail"]
        assert detail["code"] == "VALIDATION_ERROR"
        assert detail["details"]

    def test_start_execution(self, client):
        response = start(client, "simple-linear", {"input": "hello"}, user="alice")
        assert response.status_code == 200

        state = response.json()
        assert state["status"] == "completed"
        assert state["output"] == {"result": "processed: hello"}
        assert state["context"]["user"] == "alice"

    def test_start_missing_input(self, client):
        response = start(client, "simple-linear", {})
        assert response.status_code == 400
        assert client.get("/executions").json()["total"] == 0

    def test_start_unknown_workflow(self, client):
        response = start(client, "nonexistent", {})
        assert response.status_code == 404


# ============================================================
# Execution Endpoints
# ============================================================

class TestExecutionEndpoints:
    """Tests for execution endpoints."""

    def test_approval_round_trip(self, client):
        paused = start(client, "content-approval", {"content": "Draft"}).json()
        assert paused["status"] == "paused"
        checkpoint = paused["pendingCheckpoint"]
        assert checkpoint["displayData"] == {"data_content": "Draft"}

        response = client.post(f"/executions/{paused['executionId']}/respond", json={
            "checkpointId": checkpoint["id"],
            "response": "approve",
            "data": {"feedback": "Ship it"},
        })
        assert response.status_code == 200
        assert response.json()["output"]["decision"] == "approved"

        stale = client.post(f"/executions/{paused['executionId']}/respond", json={
            "checkpointId": checkpoint["id"],
            "response": "approve",
        })
        assert stale.status_code == 409
        assert stale.json()["detail"]["code"] == "STALE_CHECKPOINT"

    def test_invalid_response(self, client):
        paused = start(client, "content-approval", {"content": "Draft"}).json()

        response = client.post(f"/executions/{paused['executionId']}/respond", json={
            "checkpointId": paused["pendingCheckpoint"]["id"],
            "response": "maybe",
        })
        assert response.status_code == 400

        state = client.get(f"/executions/{paused['executionId']}").json()
        assert state["status"] == "paused"

    def test_respond_unknown_execution(self, client):
        response = client.post("/executions/nope/respond", json={"checkpointId": "c", "response": "ok"})
        assert response.status_code == 404

    def test_get_execution(self, client):
        execution_id = start(client, "simple-linear", {"input": "x"}).json()["executionId"]

        response = client.get(f"/executions/{execution_id}")
        assert response.status_code == 200
        assert response.json()["completedNodes"] == ["start", "process", "end"]

        assert client.get("/executions/nope").status_code == 404

    def test_list_executions(self, client):
        start(client, "simple-linear", {"input": "x"}, user="alice")
        start(client, "content-approval", {"content": "c"}, user="bob")

        data = client.get("/executions", params={"user": "bob"}).json()
        assert data["total"] == 1
        assert data["executions"][0]["status"] == "paused"
        assert data["executions"][0]["pendingCheckpoint"]["nodeId"] == "approval"

        assert client.get("/executions", params={"status": "completed"}).json()["total"] == 1

    def test_cancel(self, client):
        paused = start(client, "content-approval", {"content": "Draft"}).json()

        response = client.post(f"/executions/{paused['executionId']}/cancel")
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["message"] == "Execution cancelled"

        again = client.post(f"/executions/{paused['executionId']}/cancel")
        assert again.json()["message"] == "Execution already finished"

        assert client.post("/executions/nope/cancel").status_code == 404

    def test_delete(self, client):
        execution_id = start(client, "simple-linear", {"input": "x"}).json()["executionId"]

        assert client.delete(f"/executions/{execution_id}").status_code == 204
        assert client.get(f"/executions/{execution_id}").status_code == 404
        assert client.delete(f"/executions/{execution_id}").status_code == 404


# ============================================================
# Tools Endpoints
# ============================================================

class TestToolsEndpoints:
    """Tests for tools endpoints."""

    def test_list_tools(self, client):
        response = client.get("/tools")
        assert response.status_code == 200

        data = response.json()
        assert data["total"] == 4
        assert {t["name"] for t in data["tools"]} == {"add", "echo", "search", "explode"}

    def test_get_tool(self, client):
        response = client.get("/tools/add")
        assert response.status_code == 200
        assert response.json()["parameters"] == {"a": "int", "b": "int"}

    def test_get_tool_not_found(self, client):
        assert client.get("/tools/nonexistent").status_code == 404


# ============================================================
# WebSocket
# ============================================================

class TestWebSocket:
    """Tests for execution streaming."""

    def test_snapshot_and_events(self, client):
        paused = start(client, "content-approval", {"content": "Draft"}).json()
        execution_id = paused["executionId"]

        with client.websocket_connect(f"/ws/executions/{execution_id}") as ws:
            snapshot = ws.receive_json()
            assert snapshot["type"] == "snapshot"
            assert snapshot["state"]["status"] == "paused"

            client.post(f"/executions/{execution_id}/respond", json={
                "checkpointId": paused["pendingCheckpoint"]["id"],
                "response": "reject",
            })

            events = []
            for _ in range(20):
                message = ws.receive_json()
                events.append(message["event"])
                if message["event"] == "workflow.complete":
                    break

            assert events[0] == "workflow.resumed"
            assert events[-1] == "workflow.complete"

            ws.send_json({"action": "state"})
            fresh = ws.receive_json()
            assert fresh["terminal"] is True
            assert fresh["state"]["output"]["decision"] == "rejected"

            ws.send_json({"action": "dance"})
            assert ws.receive_json()["type"] == "error"

    def test_unknown_execution_is_refused(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/executions/nope") as ws:
                ws.receive_json()


# ============================================================
# Async Tests (using httpx AsyncClient)
# ============================================================

@pytest.mark.asyncio
async def test_async_background_execution(engine, tools):
    """A background start returns at once; the result is polled."""
    store = WorkflowStore()
    await register_builtin_workflows(store, engine)
    app = create_app(engine=engine, workflow_store=store, tools_registry=tools)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.post(
            "/workflows/value-decision/executions",
            json={"input": {"value": 42}, "background": True},
        )
        assert response.status_code == 200
        execution_id = response.json()["executionId"]

        await engine.wait(execution_id)

        response = await ac.get(f"/executions/{execution_id}")
        assert response.json()["status"] == "completed"
        assert response.json()["output"] == {"result": "high", "value": 42}
