"""Namespaced catalog of the tools offered by every known server."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from tooldock.config import NAME_SEPARATOR
from tooldock.registry import ServerRecord, ServerRegistry
from tooldock.schemas import CapabilityDescriptor
from tooldock.transport import HttpTransport, TransportError

logger = logging.getLogger(__name__)


def qualify(server: str, local_name: str) -> str:
    """Build the catalog-wide name of a server's tool."""
    return f"{server}{NAME_SEPARATOR}{local_name}"


def split_qualified_name(qualified_name: str) -> tuple[str, str] | None:
    """Split on the first separator; None if either part would be empty."""
    server, separator, local_name = qualified_name.partition(NAME_SEPARATOR)
    if not separator or not server or not local_name:
        return None
    return server, local_name


class ToolCatalog:
    """Snapshot of all server tools, replaced wholesale on every refresh."""

    def __init__(self, registry: ServerRegistry, http: HttpTransport):
        self.registry = registry
        self.http = http
        self._snapshot: tuple[CapabilityDescriptor, ...] = ()
        self._index: dict[str, CapabilityDescriptor] = {}
        self._refresh_lock = asyncio.Lock()

    async def refresh(self) -> list[CapabilityDescriptor]:
        """Poll every known server for its tools and replace the snapshot.

        Servers that fail to answer contribute no tools. Overlapping calls
        are serialized so each swap installs one complete refresh.
        """
        async with self._refresh_lock:
            records = self.registry.all()
            per_server = await asyncio.gather(*(self._fetch(record) for record in records))

            index: dict[str, CapabilityDescriptor] = {}
            for descriptors in per_server:
                for descriptor in descriptors:
                    if descriptor.qualified_name in index:
                        logger.warning(f"Duplicate tool {descriptor.qualified_name} ignored")
                        continue
                    index[descriptor.qualified_name] = descriptor

            self._index = index
            self._snapshot = tuple(index.values())
            return list(self._snapshot)

    def list(self) -> list[CapabilityDescriptor]:
        return list(self._snapshot)

    def find(self, qualified_name: str) -> CapabilityDescriptor | None:
        return self._index.get(qualified_name)

    def has(self, qualified_name: str) -> bool:
        return qualified_name in self._index

    def function_declarations(self) -> list[dict[str, Any]]:
        """Catalog in the function-declaration format the agent consumes."""
        return [
            descriptor.to_function_declaration().model_dump()
            for descriptor in self._snapshot
        ]

    async def _fetch(self, record: ServerRecord) -> list[CapabilityDescriptor]:
        try:
            tools = await self.http.client_for(record.url).list_tools()
        except TransportError as e:
            logger.warning(f"Error fetching tools from MCP server {record.name}: {e}")
            return []

        descriptors = [
            CapabilityDescriptor(
                qualified_name=qualify(record.name, tool.name),
                server=record.name,
                local_name=tool.name,
                description=f"[{record.name}] {tool.description}",
                parameters=tool.parameters,
            )
            for tool in tools
        ]
        logger.info(
            f"Refreshed tools from MCP server {record.name}: {len(descriptors)} tools found"
        )
        return descriptors
