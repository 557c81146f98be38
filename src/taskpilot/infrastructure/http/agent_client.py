"""
Agent API Client

HTTP boundary of the execution client. Wraps the agent server's REST
operations and its three event-stream endpoints (start, execute approved,
resume) on top of ``httpx.AsyncClient``.

Request/response operations return parsed JSON or domain objects and
raise ``ApiError`` for non-2xx answers and ``TransportError`` for
connection failures. Stream operations are async context managers that
yield the raw byte iterator of the response body; decoding is the
FrameDecoder's job.
"""

import json
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal, Optional

import httpx
import structlog

from taskpilot.core.domain.approval import ToolApprovalSettings
from taskpilot.core.domain.errors import ApiError, TransportError
from taskpilot.core.domain.models import (
    Action,
    ActionResult,
    ActionStatus,
    ActionType,
    ExecutionStatus,
    Question,
)

logger = structlog.get_logger()

DEFAULT_BASE_URL = "http://localhost:3000/api"


@dataclass
class ExecutionSnapshot:
    """Server-side record of an execution and its actions."""

    execution_id: str
    status: ExecutionStatus
    error_message: Optional[str] = None
    task_id: Optional[str] = None
    project_id: Optional[str] = None
    actions: list[Action] = field(default_factory=list)


@dataclass
class ExecutionSummary:
    """One row of a project's execution history."""

    execution_id: str
    status: ExecutionStatus
    task_id: Optional[str] = None
    task_title: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    actions_count: int = 0
    failed_actions_count: int = 0
    error_message: Optional[str] = None


@dataclass
class ExecutionStats:
    """Aggregate execution counts of a project. Durations are in milliseconds."""

    total_executions: int = 0
    completed_executions: int = 0
    failed_executions: int = 0
    avg_duration: Optional[float] = None


def _maybe_json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


def parse_action_record(record: dict[str, Any]) -> Action:
    """Build an Action from a stored action record.

    Stored records carry ``actionParams`` and ``result`` as JSON strings.
    """
    params = _maybe_json(record.get("actionParams") or record.get("params") or {})
    raw_result = _maybe_json(record.get("result"))
    result = None
    if raw_result:
        result = ActionResult(
            success=bool(raw_result.get("success", raw_result.get("error") is None)),
            output=raw_result.get("output"),
            error=raw_result.get("error"),
        )
    return Action(
        id=record["id"],
        type=ActionType(record.get("actionType") or record["type"]),
        params=params,
        status=ActionStatus(record["status"]),
        result=result,
    )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return "Request failed"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return "Request failed"


class AgentApiClient:
    """Async client for the agent execution API.

    Example:
        >>> async with AgentApiClient("http://localhost:3000/api") as client:
        ...     async with client.start_execution("proj-1", "task-1") as chunks:
        ...         async for chunk in chunks:
        ...             ...
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: API root, e.g. http://localhost:3000/api
            timeout: Timeout for request/response calls in seconds
            connect_timeout: Connect timeout for all calls in seconds
            headers: Extra headers sent with every request
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout, connect=connect_timeout)
        # Streams have no read timeout: a slow agent and a hung one look the same.
        self._stream_timeout = httpx.Timeout(timeout, connect=connect_timeout, read=None)
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._timeout,
            headers={"Content-Type": "application/json", **(headers or {})},
            transport=transport,
        )
        self.logger = logger.bind(component="agent_api_client", base_url=self.base_url)

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        """Build a client from ClientSettings."""
        return cls(
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            connect_timeout=settings.connect_timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "AgentApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        try:
            response = await self._http.request(method, path, json=payload, params=params)
        except httpx.HTTPError as e:
            self.logger.error("api.request.failed", method=method, path=path, error=str(e))
            raise TransportError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            message = _error_message(response)
            self.logger.warning(
                "api.request.rejected",
                method=method,
                path=path,
                status_code=response.status_code,
                error=message,
            )
            raise ApiError(message, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{method} {path} returned invalid JSON") from e

    @asynccontextmanager
    async def _open_stream(self, path: str) -> AsyncIterator[AsyncIterator[bytes]]:
        self.logger.info("api.stream.opening", path=path)
        try:
            async with self._http.stream("POST", path, timeout=self._stream_timeout) as response:
                if response.is_error:
                    await response.aread()
                    message = _error_message(response)
                    self.logger.warning(
                        "api.stream.rejected",
                        path=path,
                        status_code=response.status_code,
                        error=message,
                    )
                    raise ApiError(message, status_code=response.status_code)
                yield response.aiter_bytes()
        except httpx.HTTPError as e:
            self.logger.error("api.stream.failed", path=path, error=str(e))
            raise TransportError(f"Event stream {path} failed: {e}") from e
        finally:
            self.logger.debug("api.stream.closed", path=path)

    # Event streams

    def start_execution(self, project_id: str, task_id: str):
        """Begin analysis of a task. Yields the start-phase event stream."""
        return self._open_stream(f"/projects/{project_id}/tasks/{task_id}/agent/start")

    def execute_approved(self, execution_id: str):
        """Run all currently approved actions. Yields the execute-phase event stream."""
        return self._open_stream(f"/agent/executions/{execution_id}/execute")

    def resume_execution(self, execution_id: str):
        """Continue after an answered question. Yields a start-phase event stream."""
        return self._open_stream(f"/agent/executions/{execution_id}/resume")

    # Commands

    async def update_action_status(
        self,
        execution_id: str,
        action_ids: list[str],
        status: Literal["approved", "rejected"],
    ) -> dict[str, Any]:
        """Approve or reject a batch of actions server-side."""
        return await self._request(
            "POST",
            f"/agent/executions/{execution_id}/approve",
            {"actionIds": list(action_ids), "status": status},
        )

    async def cancel_execution(self, execution_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/agent/executions/{execution_id}/cancel")

    async def answer_question(
        self, execution_id: str, question_id: str, response: str
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/agent/executions/{execution_id}/questions/{question_id}/answer",
            {"response": response},
        )

    async def get_tool_approval_settings(self, project_id: str) -> ToolApprovalSettings:
        data = await self._request("GET", f"/projects/{project_id}/tool-approval-settings")
        return ToolApprovalSettings.model_validate(data or {})

    async def update_tool_approval_settings(
        self, project_id: str, settings: ToolApprovalSettings
    ) -> dict[str, Any]:
        return await self._request(
            "POST", f"/projects/{project_id}/tool-approval-settings", settings.to_wire()
        )

    # Queries

    async def get_execution(self, execution_id: str) -> ExecutionSnapshot:
        """Fetch the stored execution record with all of its actions."""
        data = await self._request("GET", f"/agent/executions/{execution_id}")
        execution = data["execution"]
        return ExecutionSnapshot(
            execution_id=execution["id"],
            status=ExecutionStatus(execution["status"]),
            error_message=execution.get("errorMessage"),
            task_id=execution.get("taskId"),
            project_id=execution.get("projectId"),
            actions=[parse_action_record(record) for record in data.get("actions", [])],
        )

    async def get_pending_questions(self, execution_id: str) -> list[Question]:
        data = await self._request("GET", f"/agent/executions/{execution_id}/questions")
        return [
            Question(id=item["id"], question=item["question"], context=item.get("context"))
            for item in data
            if item.get("status", "pending") == "pending"
        ]

    # Execution history

    async def list_executions(
        self,
        project_id: str,
        status: Optional[ExecutionStatus] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[ExecutionSummary]:
        """List a project's executions, newest first as the server orders them.

        Args:
            project_id: Project whose history to list
            status: Only executions in this status
            limit: Maximum number of rows
            offset: Rows to skip (paging)
        """
        params: dict[str, Any] = {}
        if status:
            params["status"] = ExecutionStatus(status).value
        if limit:
            params["limit"] = limit
        if offset:
            params["offset"] = offset

        data = await self._request("GET", f"/projects/{project_id}/executions", params=params or None)
        return [
            ExecutionSummary(
                execution_id=item["id"],
                status=ExecutionStatus(item["status"]),
                task_id=item.get("taskId"),
                task_title=item.get("taskTitle"),
                created_at=item.get("createdAt"),
                completed_at=item.get("completedAt"),
                actions_count=item.get("actionsCount") or 0,
                failed_actions_count=item.get("failedActionsCount") or 0,
                error_message=item.get("errorMessage"),
            )
            for item in data or []
        ]

    async def get_execution_stats(self, project_id: str) -> ExecutionStats:
        data = await self._request("GET", f"/projects/{project_id}/executions/stats") or {}
        return ExecutionStats(
            total_executions=data.get("totalExecutions") or 0,
            completed_executions=data.get("completedExecutions") or 0,
            failed_executions=data.get("failedExecutions") or 0,
            avg_duration=data.get("avgDuration"),
        )
