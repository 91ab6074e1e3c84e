"""Pytest configuration and fixtures for ToolDock tests."""

import inspect
import json
from typing import Any, Callable

import httpx
import pytest

from tooldock.config import OrchestratorConfig, ReadinessConfig
from tooldock.state import MemoryStateStore


class FakeToolServers:
    """In-process tool servers behind an httpx.MockTransport, keyed by host.

    Every request is recorded in `calls` so tests can assert on network use.
    """

    def __init__(self):
        self.tools: dict[str, list[dict[str, Any]]] = {}
        self.executors: dict[str, Callable[[dict[str, Any]], Any]] = {}
        self.down: set[str] = set()
        self.calls: list[httpx.Request] = []

    def add(
        self,
        host: str,
        tools: list[dict[str, Any]],
        execute: Callable[[dict[str, Any]], Any] | None = None,
    ) -> str:
        """Add a server and return its base URL."""
        self.tools[host] = tools
        if execute is not None:
            self.executors[host] = execute
        return f"http://{host}"

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [request for request in self.calls if request.url.path == path]

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        host = request.url.host
        if host in self.down or host not in self.tools:
            raise httpx.ConnectError("Connection refused", request=request)

        if request.method == "GET" and request.url.path == "/tools":
            return httpx.Response(200, json={"tools": self.tools[host]})

        if request.method == "POST" and request.url.path == "/execute":
            body = json.loads(request.content)
            executor = self.executors.get(host, _echo_execute)
            outcome = executor(body)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            if isinstance(outcome, httpx.Response):
                return outcome
            return httpx.Response(200, json=outcome)

        return httpx.Response(404, json={"detail": "Not Found"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


def _echo_execute(body: dict[str, Any]) -> dict[str, Any]:
    return {"id": body["id"], "result": f"{body['name']}:{body['arguments']}"}


def tool(name: str, description: str = "", **properties: Any) -> dict[str, Any]:
    """Build a tool descriptor as a server would list it."""
    return {
        "name": name,
        "description": description or f"The {name} tool",
        "parameters": {
            "type": "object",
            "properties": properties,
            "required": list(properties),
        },
    }


@pytest.fixture
def fake_servers() -> FakeToolServers:
    return FakeToolServers()


@pytest.fixture
def memory_store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def fast_config(tmp_path) -> OrchestratorConfig:
    """Config with quick readiness probing and a private state file."""
    return OrchestratorConfig(
        state_file=str(tmp_path / "state.json"),
        request_timeout=5.0,
        terminate_timeout=2.0,
        readiness=ReadinessConfig(attempts=3, initial_delay=0.01, backoff=2.0, max_delay=0.05),
    )


@pytest.fixture
def make_tool() -> Callable[..., dict[str, Any]]:
    return tool
