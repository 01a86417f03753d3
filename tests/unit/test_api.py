"""
Unit tests for the taskweave HTTP API.

Tests the health endpoint and the task routes against an in-process
TaskManager.
"""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from taskweave import __version__
from taskweave.api.main import create_app
from taskweave.core.manager import TaskManager

# =============================================================================
# TEST FIXTURES
# =============================================================================


@pytest.fixture
def manager(catalog, settings) -> TaskManager:
    """Create a manager without persistence."""
    return TaskManager(catalog=catalog, settings=settings)


@pytest.fixture
def client(manager: TaskManager, settings) -> Generator[TestClient, None, None]:
    """Create a FastAPI test client with lifespan events."""
    with TestClient(create_app(manager=manager, settings=settings)) as test_client:
        yield test_client


def create(client: TestClient, **payload) -> dict:
    response = client.post("/api/tasks/", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


# =============================================================================
# TEST HEALTH ENDPOINT
# =============================================================================


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check(self, client: TestClient) -> None:
        """Test health endpoint reports status and version."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "version": __version__,
            "database": "disabled",
        }


# =============================================================================
# TEST TASK ROUTES
# =============================================================================


class TestCreateTask:
    """Tests for POST /api/tasks/."""

    def test_create_with_legacy_dependencies(self, client: TestClient) -> None:
        data = create(client, id="b", name="b", dependsOn=["a"], input={"x": 1})

        assert data["id"] == "b"
        assert data["status"] == "pending"
        assert data["dependencies"] == ["a"]
        assert data["input"] == {"x": 1}
        assert data["result"] is None

    def test_create_generates_id(self, client: TestClient) -> None:
        data = create(client, name="anonymous")

        assert data["id"]

    def test_invalid_config(self, client: TestClient) -> None:
        response = client.post("/api/tasks/", json={"plugins": ["echo"]})

        assert response.status_code == 422


class TestListAndGet:
    """Tests for GET routes."""

    def test_list_with_filters(self, client: TestClient) -> None:
        create(client, id="a", name="a", agentId="agent-1", sessionId="s1")
        create(client, id="b", name="b", agentId="agent-2", sessionId="s1")
        create(client, id="c", name="c", agentId="agent-1", sessionId="s2")

        def listed(**params) -> list[str]:
            response = client.get("/api/tasks/", params=params)
            assert response.status_code == 200
            return [t["id"] for t in response.json()]

        assert listed() == ["a", "b", "c"]
        assert listed(session_id="s1") == ["a", "b"]
        assert listed(agent_id="agent-1") == ["a", "c"]
        assert listed(agent_id="agent-1", session_id="s1") == ["a"]
        assert listed(status="pending") == ["a", "b", "c"]
        assert listed(status="completed") == []

    def test_invalid_status_filter(self, client: TestClient) -> None:
        assert client.get("/api/tasks/", params={"status": "sleeping"}).status_code == 422

    def test_get_task(self, client: TestClient) -> None:
        create(client, id="a", name="a", description="First")

        response = client.get("/api/tasks/a")

        assert response.status_code == 200
        assert response.json()["description"] == "First"

    def test_get_unknown_task(self, client: TestClient) -> None:
        assert client.get("/api/tasks/ghost").status_code == 404


class TestRunAndExecute:
    """Tests for running tasks through the API."""

    def test_run_all(self, client: TestClient) -> None:
        create(client, id="a", name="a", plugins=["upper"], input={"text": "x"})
        create(client, id="b", name="b", plugins=["noop"], dependencies=["a"])

        response = client.post("/api/tasks/run")

        assert response.status_code == 200
        data = response.json()
        assert data["waves"] == [["a"], ["b"]]
        assert data["results"]["a"]["output"] == {"text": "X"}
        assert data["results"]["b"]["output"] == {"_dependencyOutputs": {"a": {"text": "X"}}}
        assert client.get("/api/tasks/b").json()["status"] == "completed"

    def test_run_subset(self, client: TestClient) -> None:
        create(client, id="a", name="a")
        create(client, id="b", name="b")

        response = client.post("/api/tasks/run", json={"task_ids": ["b", "ghost"]})

        assert list(response.json()["results"]) == ["b"]

    def test_run_reports_failures(self, client: TestClient) -> None:
        create(client, id="a", name="a", plugins=["boom"])

        result = client.post("/api/tasks/run").json()["results"]["a"]

        assert result["success"] is False
        assert result["error"]["type"] == "CapabilityExecutionError"

    def test_execute_task(self, client: TestClient) -> None:
        create(client, id="a", name="a", plugins=["upper"])

        response = client.post("/api/tasks/a/execute", json={"input": {"text": "go"}})

        assert response.status_code == 200
        assert response.json()["output"] == {"text": "GO"}

    def test_execute_unknown_task(self, client: TestClient) -> None:
        assert client.post("/api/tasks/ghost/execute").status_code == 404


class TestCancel:
    """Tests for cancellation routes."""

    def test_cancel_task(self, client: TestClient) -> None:
        create(client, id="a", name="a")

        response = client.post("/api/tasks/a/cancel")

        assert response.json() == {"task_id": "a", "cancelled": True}
        detail = client.get("/api/tasks/a").json()
        assert detail["status"] == "failed"
        assert detail["result"]["error"]["type"] == "TaskCancelledError"

    def test_cancel_unknown_task(self, client: TestClient) -> None:
        assert client.post("/api/tasks/ghost/cancel").status_code == 404

    def test_cancel_all(self, client: TestClient) -> None:
        create(client, id="a", name="a")
        create(client, id="b", name="b")

        assert client.post("/api/tasks/cancel-all").json() == {"cancelled": 2}


class TestWithoutManager:
    """Tests for requests before a manager is attached."""

    def test_service_unavailable(self, settings) -> None:
        app = create_app(settings=settings)
        client = TestClient(app)

        assert client.get("/api/tasks/").status_code == 503
