"""Shared fixtures: a scripted agent server behind httpx.MockTransport."""

import json
from typing import Any, Callable, Union

import httpx
import pytest
import pytest_asyncio

from taskpilot.infrastructure.http.agent_client import AgentApiClient

BASE_URL = "http://agent.test/api"

Reply = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


def frame(name: str, data: Any) -> bytes:
    """Encode one wire frame."""
    return f"event: {name}\ndata: {json.dumps(data)}\n\n".encode("utf-8")


def stream_body(*frames: bytes) -> bytes:
    return b"".join(frames)


class FakeAgentServer:
    """Canned responses per (method, path), recording every request."""

    def __init__(self):
        self.routes: dict[tuple[str, str], list[Reply]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, *replies: Reply) -> None:
        """Queue replies for a route. The last reply is repeated."""
        self.routes[(method, "/api" + path)] = list(replies)

    def on_json(self, method: str, path: str, payload: Any, status_code: int = 200) -> None:
        self.on(method, path, httpx.Response(status_code, json=payload))

    def on_stream(self, method: str, path: str, *frames: bytes) -> None:
        self.on(
            method,
            path,
            httpx.Response(
                200, content=stream_body(*frames), headers={"Content-Type": "text/event-stream"}
            ),
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        replies = self.routes.get((request.method, request.url.path))
        if not replies:
            return httpx.Response(404, json={"error": f"No route {request.url.path}"})
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if callable(reply) and not isinstance(reply, httpx.Response):
            return reply(request)
        return reply

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/api" + path]

    def body_of(self, request: httpx.Request) -> Any:
        return json.loads(request.content)


@pytest.fixture
def server():
    return FakeAgentServer()


@pytest_asyncio.fixture
async def client(server):
    api = AgentApiClient(BASE_URL, transport=httpx.MockTransport(server.handler))
    yield api
    await api.close()
