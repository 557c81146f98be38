"""Unit Tests for AgentApiClient request/response operations."""

import httpx
import pytest

from taskpilot.config.settings import ClientSettings
from taskpilot.core.domain.approval import ToolApprovalSettings
from taskpilot.core.domain.errors import ApiError, TransportError
from taskpilot.core.domain.models import ActionStatus, ActionType, ExecutionStatus
from taskpilot.infrastructure.http.agent_client import AgentApiClient, parse_action_record


@pytest.mark.asyncio
async def test_stream_yields_raw_bytes(client, server):
    server.on_stream("POST", "/agent/executions/exec-1/execute", b"event: done\ndata: {}\n\n")

    async with client.execute_approved("exec-1") as chunks:
        body = b"".join([chunk async for chunk in chunks])

    assert body == b"event: done\ndata: {}\n\n"
    assert server.requests[0].method == "POST"


@pytest.mark.asyncio
async def test_stream_rejection_raises_api_error(client, server):
    server.on_json("POST", "/agent/executions/exec-1/resume", {"error": "Execution not found"}, 404)

    with pytest.raises(ApiError) as exc_info:
        async with client.resume_execution("exec-1"):
            pass

    assert exc_info.value.status_code == 404
    assert exc_info.value.message == "Execution not found"


@pytest.mark.asyncio
async def test_error_without_body_uses_generic_message(client, server):
    server.on("POST", "/agent/executions/exec-1/cancel", httpx.Response(502, text="Bad gateway"))

    with pytest.raises(ApiError, match="Request failed"):
        await client.cancel_execution("exec-1")


@pytest.mark.asyncio
async def test_connection_error_raises_transport_error(client, server):
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    server.on("POST", "/agent/executions/exec-1/cancel", refuse)

    with pytest.raises(TransportError) as exc_info:
        await client.cancel_execution("exec-1")

    assert not isinstance(exc_info.value, ApiError)


@pytest.mark.asyncio
async def test_tool_approval_settings_roundtrip(client, server):
    path = "/projects/p1/tool-approval-settings"
    server.on_json("GET", path, {"writeFile": False, "projectId": "p1"})

    settings = await client.get_tool_approval_settings("p1")

    assert settings.get(ActionType.WRITE_FILE) is False
    assert settings.get(ActionType.READ_FILE) is None

    server.on_json("POST", path, {"success": True})
    await client.update_tool_approval_settings("p1", ToolApprovalSettings.defaults())

    body = server.body_of(server.requests_to(path)[-1])
    assert body["executeCommand"] is True
    assert body["readFile"] is False


@pytest.mark.asyncio
async def test_get_execution_snapshot(client, server):
    server.on_json(
        "GET",
        "/agent/executions/exec-1",
        {
            "execution": {"id": "exec-1", "status": "failed", "errorMessage": "boom"},
            "actions": [],
        },
    )

    snapshot = await client.get_execution("exec-1")

    assert snapshot.status == ExecutionStatus.FAILED
    assert snapshot.error_message == "boom"
    assert snapshot.actions == []


def test_parse_action_record_with_json_strings():
    action = parse_action_record(
        {
            "id": "a1",
            "actionType": "executeCommand",
            "actionParams": '{"command": "npm test"}',
            "status": "failed",
            "result": '{"error": "exit 1"}',
        }
    )

    assert action.type == ActionType.EXECUTE_COMMAND
    assert action.params == {"command": "npm test"}
    assert action.status == ActionStatus.FAILED
    assert action.result.success is False
    assert action.result.error == "exit 1"


@pytest.mark.asyncio
async def test_from_settings():
    settings = ClientSettings(base_url="http://x/api/", request_timeout=5.0)

    async with AgentApiClient.from_settings(settings) as api:
        assert api.base_url == "http://x/api"


@pytest.mark.asyncio
async def test_list_executions_with_filters(client, server):
    path = "/projects/p1/executions"
    server.on_json(
        "GET",
        path,
        [
            {
                "id": "exec-2",
                "status": "failed",
                "taskId": "t1",
                "taskTitle": "Add login",
                "createdAt": "2024-05-01T10:00:00Z",
                "actionsCount": 4,
                "failedActionsCount": 1,
                "errorMessage": "Model timeout",
            }
        ],
    )

    executions = await client.list_executions("p1", status=ExecutionStatus.FAILED, limit=10)

    request = server.requests_to(path)[0]
    assert dict(request.url.params) == {"status": "failed", "limit": "10"}
    assert len(executions) == 1
    assert executions[0].execution_id == "exec-2"
    assert executions[0].status == ExecutionStatus.FAILED
    assert executions[0].task_title == "Add login"
    assert executions[0].failed_actions_count == 1
    assert executions[0].error_message == "Model timeout"


@pytest.mark.asyncio
async def test_list_executions_without_filters(client, server):
    path = "/projects/p1/executions"
    server.on_json("GET", path, [])

    assert await client.list_executions("p1") == []
    assert server.requests_to(path)[0].url.query == b""


@pytest.mark.asyncio
async def test_get_execution_stats(client, server):
    server.on_json(
        "GET",
        "/projects/p1/executions/stats",
        {"totalExecutions": 12, "completedExecutions": 9, "failedExecutions": 2, "avgDuration": 45000},
    )

    stats = await client.get_execution_stats("p1")

    assert stats.total_executions == 12
    assert stats.completed_executions == 9
    assert stats.failed_executions == 2
    assert stats.avg_duration == 45000
