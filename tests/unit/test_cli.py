"""Tests for the Taskpilot CLI commands."""

import httpx
import pytest
from typer.testing import CliRunner

from conftest import frame
from taskpilot import __version__
from taskpilot.api.cli.main import app
from taskpilot.infrastructure.http.agent_client import AgentApiClient

START = "/projects/p1/tasks/t1/agent/start"
SETTINGS = "/projects/p1/tool-approval-settings"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cli_server(server, monkeypatch):
    """Route every client the CLI creates to the scripted server."""
    original = AgentApiClient.from_settings.__func__

    def from_settings(cls, settings, transport=None):
        return original(cls, settings, transport=httpx.MockTransport(server.handler))

    monkeypatch.setattr(AgentApiClient, "from_settings", classmethod(from_settings))
    return server


@pytest.fixture
def config_args(tmp_path):
    return ["--config", str(tmp_path / "config.yaml")]


def test_version(runner):
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_run_task_approves_and_executes(runner, cli_server, config_args):
    cli_server.on_json("GET", SETTINGS, {})
    cli_server.on_stream(
        "POST",
        START,
        frame("status", {"executionId": "exec-1", "status": "analyzing"}),
        frame("action", {"id": "a1", "type": "writeFile", "params": {"path": "app.py", "content": "x"}, "status": "proposed"}),
        frame("status", {"status": "awaiting_approval"}),
        frame("done", {}),
    )
    cli_server.on_json("POST", "/agent/executions/exec-1/approve", {"success": True})
    cli_server.on_stream(
        "POST",
        "/agent/executions/exec-1/execute",
        frame("executing", {"actionId": "a1"}),
        frame("actionComplete", {"actionId": "a1", "success": True}),
        frame("status", {"status": "completed"}),
    )

    result = runner.invoke(app, [*config_args, "run", "task", "p1", "t1", "--yes"])

    assert result.exit_code == 0
    assert "Execution completed!" in result.stdout
    approve = cli_server.requests_to("/agent/executions/exec-1/approve")[0]
    assert cli_server.body_of(approve) == {"actionIds": ["a1"], "status": "approved"}


def test_run_task_answers_question(runner, cli_server, config_args):
    cli_server.on_json("GET", SETTINGS, {})
    cli_server.on_stream(
        "POST",
        START,
        frame("status", {"executionId": "exec-1", "status": "analyzing"}),
        frame("question", {"id": "q1", "question": "Which database?"}),
    )
    cli_server.on_json("POST", "/agent/executions/exec-1/questions/q1/answer", {"success": True})
    cli_server.on_stream(
        "POST", "/agent/executions/exec-1/resume", frame("status", {"status": "completed"})
    )

    result = runner.invoke(app, [*config_args, "run", "task", "p1", "t1"], input="Postgres\n")

    assert result.exit_code == 0
    answer = cli_server.requests_to("/agent/executions/exec-1/questions/q1/answer")[0]
    assert cli_server.body_of(answer) == {"response": "Postgres"}


def test_run_task_exits_nonzero_on_failure(runner, cli_server, config_args):
    cli_server.on_json("GET", SETTINGS, {})
    cli_server.on_stream(
        "POST",
        START,
        frame("status", {"executionId": "exec-1", "status": "analyzing"}),
        frame("error", {"error": "Model quota exceeded"}),
    )

    result = runner.invoke(app, [*config_args, "run", "task", "p1", "t1"])

    assert result.exit_code == 1
    assert "Model quota exceeded" in result.stdout


def test_executions_cancel(runner, cli_server, config_args):
    cli_server.on_json(
        "GET",
        "/agent/executions/exec-1",
        {"execution": {"id": "exec-1", "status": "awaiting_approval"}, "actions": []},
    )
    cli_server.on_json("GET", "/agent/executions/exec-1/questions", [])
    cli_server.on_json("POST", "/agent/executions/exec-1/cancel", {"success": True})

    result = runner.invoke(app, [*config_args, "executions", "cancel", "exec-1"])

    assert result.exit_code == 0
    assert len(cli_server.requests_to("/agent/executions/exec-1/cancel")) == 1


def test_executions_show_unknown(runner, cli_server, config_args):
    cli_server.on_json("GET", "/agent/executions/nope", {"error": "Execution not found"}, 404)

    result = runner.invoke(app, [*config_args, "executions", "show", "nope"])

    assert result.exit_code == 1
    assert "Execution not found" in result.stdout


def test_settings_set(runner, cli_server, config_args):
    cli_server.on("GET", SETTINGS, httpx.Response(200, json={"writeFile": True}))
    cli_server.on_json("POST", SETTINGS, {"success": True})

    result = runner.invoke(app, [*config_args, "settings", "set", "p1", "executeCommand", "off"])

    assert result.exit_code == 0
    posted = [r for r in cli_server.requests_to(SETTINGS) if r.method == "POST"][0]
    body = cli_server.body_of(posted)
    assert body["executeCommand"] is False
    assert body["writeFile"] is True


def test_settings_set_rejects_unknown_tool(runner, cli_server, config_args):
    result = runner.invoke(app, [*config_args, "settings", "set", "p1", "launchRocket", "yes"])

    assert result.exit_code != 0
    assert cli_server.requests == []


def test_settings_reset(runner, cli_server, config_args):
    cli_server.on_json("POST", SETTINGS, {"success": True})

    result = runner.invoke(app, [*config_args, "settings", "reset", "p1"])

    assert result.exit_code == 0
    body = cli_server.body_of(cli_server.requests_to(SETTINGS)[0])
    assert body["writeFile"] is True
    assert body["completeTask"] is False


def test_executions_list(runner, cli_server, config_args):
    cli_server.on_json(
        "GET",
        "/projects/p1/executions",
        [{"id": "exec-1", "status": "completed", "taskTitle": "Fix bug", "actionsCount": 2}],
    )

    result = runner.invoke(app, [*config_args, "executions", "list", "p1", "--status", "completed", "--limit", "5"])

    assert result.exit_code == 0
    assert "exec-1" in result.stdout
    request = cli_server.requests_to("/projects/p1/executions")[0]
    assert dict(request.url.params) == {"status": "completed", "limit": "5"}


def test_executions_list_empty(runner, cli_server, config_args):
    cli_server.on_json("GET", "/projects/p1/executions", [])

    result = runner.invoke(app, [*config_args, "executions", "list", "p1"])

    assert result.exit_code == 0
    assert "No executions found" in result.stdout


def test_executions_stats(runner, cli_server, config_args):
    cli_server.on_json(
        "GET",
        "/projects/p1/executions/stats",
        {"totalExecutions": 3, "completedExecutions": 2, "failedExecutions": 1, "avgDuration": 90000},
    )

    result = runner.invoke(app, [*config_args, "executions", "stats", "p1"])

    assert result.exit_code == 0
    assert "Completed: 2" in result.stdout
    assert "1.5m" in result.stdout
