"""Orchestrator facade: the single entry point an agent talks to."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from tooldock.catalog import ToolCatalog
from tooldock.config import OrchestratorConfig, ServerConfig
from tooldock.registry import ServerRecord, ServerRegistry
from tooldock.router import InvocationRouter
from tooldock.schemas import (
    CapabilityDescriptor,
    FailureKind,
    InvocationRequest,
    InvocationResult,
)
from tooldock.state import JsonFileStateStore, StateStore
from tooldock.supervisor import LaunchError, PortAllocator, ProcessSupervisor
from tooldock.transport import CancelToken, HttpTransport

logger = logging.getLogger(__name__)


class Orchestrator:
    """Launches or rejoins configured tool servers and exposes their tools.

    Persisted state is loaded at construction; a missing or broken state
    file never prevents construction.
    """

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        store: StateStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            config: Orchestrator configuration (defaults: no servers)
            store: Server state store (defaults to the configured JSON state file)
            transport: Optional httpx transport for every server call
        """
        self.config = config or OrchestratorConfig()
        self.store = store if store is not None else JsonFileStateStore(self.config.state_file)
        self.registry = ServerRegistry(self.store)
        self.http = HttpTransport(timeout=self.config.request_timeout, transport=transport)
        self.supervisor = ProcessSupervisor(
            self.registry,
            self.http,
            readiness=self.config.readiness,
            ports=PortAllocator(self.config.port_range),
            terminate_timeout=self.config.terminate_timeout,
        )
        self.catalog = ToolCatalog(self.registry, self.http)
        self.router = InvocationRouter(self.registry, self.catalog, self.http)

        self.registry.load()

    async def __aenter__(self) -> Orchestrator:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.cleanup()
        await self.aclose()

    async def start(self) -> list[CapabilityDescriptor]:
        """Bring up every configured server, persist the registry and refresh tools.

        A configured server that a previous run left reachable is reused
        instead of launched again. Launch failures are logged per server.
        """
        if not self.config.enabled:
            logger.info("MCP client is disabled")
            return []

        servers = self.config.mcp_servers
        if not servers:
            logger.info("No MCP servers configured")
        await asyncio.gather(
            *(self._bring_up(name, server) for name, server in servers.items())
        )

        self.registry.save()
        return await self.refresh_tools()

    async def launch(self, name: str, server: ServerConfig) -> ServerRecord:
        """Launch one server from its configuration.

        Raises:
            LaunchError: If the server cannot be started
        """
        return await self.supervisor.launch(
            name,
            server.command,
            server.args,
            server.port,
            env=server.env,
            cwd=server.cwd,
            port_arg=server.port_arg,
        )

    def is_enabled(self) -> bool:
        return self.config.enabled and len(self.registry) > 0

    async def refresh_tools(self) -> list[CapabilityDescriptor]:
        """Replace the catalog; with no known servers it becomes empty."""
        if not self.config.enabled:
            return []
        return await self.catalog.refresh()

    def tools(self) -> list[CapabilityDescriptor]:
        return self.catalog.list()

    def get_tool(self, name: str) -> CapabilityDescriptor | None:
        return self.catalog.find(name)

    def has_tool(self, name: str) -> bool:
        return self.catalog.has(name)

    def function_declarations(self) -> list[dict[str, Any]]:
        return self.catalog.function_declarations()

    async def invoke(
        self,
        request: InvocationRequest,
        cancel_token: CancelToken | None = None,
    ) -> InvocationResult:
        """Execute a tool call on the server that owns it."""
        if not self.config.enabled:
            return InvocationResult.fail(
                request.id, FailureKind.DISABLED, "MCP client is disabled"
            )
        return await self.router.invoke(request, cancel_token)

    async def cleanup(self) -> None:
        """Terminate owned servers and reset persisted state. Safe to repeat."""
        await self.supervisor.terminate_all()

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _bring_up(self, name: str, server: ServerConfig) -> ServerRecord | None:
        existing = self.registry.lookup(name)
        if existing is not None and existing.owned:
            return existing
        if existing is not None:
            client = self.http.client_for(existing.url)
            if await client.probe(self.config.readiness.path):
                logger.info(f"Reusing MCP server {name} at {existing.url}")
                return existing
            logger.info(f"MCP server {name} at {existing.url} is unreachable, relaunching")
            self.registry.remove(name, only_if=existing)

        try:
            return await self.launch(name, server)
        except LaunchError as e:
            logger.error(f"Error starting MCP server {name}: {e}")
            return None
