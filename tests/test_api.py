"""Tests for the HTTP API."""

from __future__ import annotations

import importlib
import json
import sys

import pytest
from fastapi.testclient import TestClient

import agent_orchestrator
from agent_orchestrator.llm_client import LLMClient, QuotaExceededError
from agent_orchestrator.models import ToolUseBlock
from agent_orchestrator.main import create_app
from agent_orchestrator.todo_store import TaskListStore
from conftest import ScriptedClient, text_response, tool_response


@pytest.fixture
def app(settings):
    return create_app(settings=settings, client=LLMClient(settings))


@pytest.fixture
def http(app) -> TestClient:
    return TestClient(app)


def test_todos_round_trip(http):
    assert http.get("/api/todos").json() == {
        "todos": [],
        "stats": {"total": 0, "pending": 0, "in_progress": 0, "completed": 0, "progress_percent": 0},
    }

    resp = http.put(
        "/api/todos",
        json={"todos": [{"content": "a", "status": "completed", "activeForm": "A-ing"}]},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["todos"] == [{"content": "a", "status": "completed", "activeForm": "A-ing"}]
    assert body["stats"]["progress_percent"] == 100


def test_rejected_update_is_400_and_keeps_list(http):
    http.put("/api/todos", json={"todos": [{"content": "a", "status": "pending", "activeForm": "A-ing"}]})

    resp = http.put("/api/todos", json={"todos": []})

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Task list is empty."
    assert len(http.get("/api/todos").json()["todos"]) == 1


def test_clear_todos(http):
    http.put("/api/todos", json={"todos": [{"content": "a", "status": "pending", "activeForm": "A-ing"}]})

    assert http.delete("/api/todos").json()["todos"] == []


def test_agents_list_and_register(http):
    assert [a["name"] for a in http.get("/api/agents").json()] == ["writer", "analyst", "reviewer", "summarizer"]

    resp = http.post("/api/agents", json={"name": "poet", "role_prompt": "You rhyme.", "allowed_tools": []})

    assert resp.status_code == 200
    assert http.get("/api/agents").json()[-1]["name"] == "poet"


def test_delegate_parallel_keeps_order_and_errors(http):
    resp = http.post(
        "/api/delegate",
        json={
            "tasks": [
                {"agentName": "writer", "prompt": "one"},
                {"agentName": "ghost", "prompt": "two"},
            ],
            "parallel": True,
        },
    )

    first, second = resp.json()
    assert first["agent_name"] == "writer" and first["error"] is None
    assert second["error"] == "Sub-agent not found: ghost"


def test_orchestrate_with_mock(http):
    resp = http.post("/api/orchestrate", json={"request": "Explain cloud computing"})

    assert resp.status_code == 200
    assert resp.json() == {"result": "Mock synthesis: combined the sub-agent results."}


def test_orchestrate_rejects_blank_request(http):
    assert http.post("/api/orchestrate", json={"request": "   "}).status_code == 400


def test_orchestrate_bad_plan_is_502(settings):
    client = ScriptedClient([text_response("no plan here")])
    http = TestClient(create_app(settings=settings, client=client))

    resp = http.post("/api/orchestrate", json={"request": "anything"})

    assert resp.status_code == 502


def test_orchestrate_quota_is_429(settings):
    client = ScriptedClient([QuotaExceededError("limit reached")])
    http = TestClient(create_app(settings=settings, client=client))

    assert http.post("/api/orchestrate", json={"request": "x"}).status_code == 429


def test_run_todo_agent(settings, tmp_path):
    store = TaskListStore(tmp_path / "run.json")
    http = TestClient(create_app(settings=settings, client=LLMClient(settings), store=store))

    body = http.post("/api/run", json={"request": "Plan a trip"}).json()

    assert body["status"] == "completed"
    assert body["iterations"] == 2
    assert body["stats"]["completed"] == 3
    assert json.loads((tmp_path / "run.json").read_text())["todos"][0]["status"] == "completed"


def test_run_reports_iteration_cap(http):
    body = http.post("/api/run", json={"request": "Plan a trip", "max_iterations": 1}).json()

    assert body["status"] == "iteration_cap_exceeded"
    assert body["iterations"] == 1


def test_apps_do_not_share_state(settings, tmp_path):
    one = TestClient(create_app(settings=settings, client=LLMClient(settings), store=TaskListStore(None)))
    two = TestClient(create_app(settings=settings, client=LLMClient(settings), store=TaskListStore(None)))

    one.put("/api/todos", json={"todos": [{"content": "a", "status": "pending", "activeForm": "A-ing"}]})

    assert two.get("/api/todos").json()["todos"] == []


def test_importing_main_touches_nothing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delitem(sys.modules, "agent_orchestrator.main", raising=False)
    monkeypatch.delattr(agent_orchestrator, "main", raising=False)

    module = importlib.import_module("agent_orchestrator.main")

    assert list(tmp_path.iterdir()) == []
    assert not hasattr(module, "app")
    assert callable(module.create_app)


def test_building_the_app_leaves_workspace_alone(settings, tmp_path):
    create_app(settings=settings, client=LLMClient(settings))

    assert not (tmp_path / "workspace").exists()


def test_get_agent(http):
    body = http.get("/api/agents/writer").json()

    assert body["name"] == "writer"
    assert body["allowed_tools"] == []


def test_unknown_agent_is_404(http):
    resp = http.get("/api/agents/ghost")

    assert resp.status_code == 404
    assert resp.json()["detail"] == "Sub-agent not found: ghost"


def test_delegate_reports_quota_per_task(settings):
    client = ScriptedClient([QuotaExceededError("limit reached"), text_response("fine")])
    http = TestClient(create_app(settings=settings, client=client))

    resp = http.post(
        "/api/delegate",
        json={"tasks": [{"agentName": "writer", "prompt": "one"}, {"agentName": "analyst", "prompt": "two"}]},
    )

    assert resp.status_code == 200
    first, second = resp.json()
    assert first["error"] == "limit reached"
    assert second["output"] == "fine"


def test_run_can_use_file_tools(settings, tmp_path):
    client = ScriptedClient(
        [
            tool_response(
                ToolUseBlock(id="w1", name="write_file", input={"path": "notes.md", "content": "# Trip"})
            ),
            text_response("done"),
        ]
    )
    app = create_app(settings=settings, client=client, store=TaskListStore(None))

    body = TestClient(app).post("/api/run", json={"request": "Plan a trip"}).json()

    assert body["status"] == "completed"
    tool_names = {t.name for t in client.requests[0].tools}
    assert {"read_file", "write_file", "list_files", "delete_file", "todo_write", "todo_read"} <= tool_names
    assert (tmp_path / "workspace" / "notes.md").read_text() == "# Trip"
    assert client.requests[1].messages[-1].content[0].is_error is False
    assert "todo_write" not in app.state.file_tools
