"""In-memory registry of known tool servers, backed by a state store."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field

from tooldock.config import validate_server_name
from tooldock.schemas import PersistedServer
from tooldock.state import MemoryStateStore, PersistenceError, StateStore

logger = logging.getLogger(__name__)


@dataclass
class ServerRecord:
    """A known server and, if this orchestrator launched it, its process."""

    name: str
    url: str
    server_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    process: asyncio.subprocess.Process | None = None
    port: int | None = None
    registered_at: float = field(default_factory=time.time)

    @property
    def owned(self) -> bool:
        """Whether this orchestrator manages the server's lifecycle."""
        return self.process is not None

    def to_persisted(self) -> PersistedServer:
        return PersistedServer(id=self.server_id, url=self.url)


class ServerRegistry:
    """Name-keyed records of servers this orchestrator can reach."""

    def __init__(self, store: StateStore | None = None):
        self.store = store if store is not None else MemoryStateStore()
        self._records: dict[str, ServerRecord] = {}

    def register_owned(
        self,
        name: str,
        url: str,
        process: asyncio.subprocess.Process,
        port: int | None = None,
    ) -> ServerRecord:
        """Record a server launched by this orchestrator, replacing any previous entry."""
        validate_server_name(name)
        record = ServerRecord(name=name, url=url, process=process, port=port)
        self._records[name] = record
        return record

    def register_discovered(
        self,
        name: str,
        url: str,
        server_id: str | None = None,
    ) -> ServerRecord:
        """Record a server whose lifecycle this orchestrator does not own."""
        validate_server_name(name)
        record = ServerRecord(name=name, url=url)
        if server_id:
            record.server_id = server_id
        self._records[name] = record
        return record

    def lookup(self, name: str) -> ServerRecord | None:
        return self._records.get(name)

    def all(self) -> list[ServerRecord]:
        return list(self._records.values())

    def remove(self, name: str, only_if: ServerRecord | None = None) -> ServerRecord | None:
        """Remove a record.

        Args:
            name: Server name
            only_if: Remove only while this exact record is the registered one,
                so a stale exit does not drop a relaunched server

        Returns:
            The removed record, or None if nothing was removed
        """
        current = self._records.get(name)
        if current is None or (only_if is not None and current is not only_if):
            return None
        del self._records[name]
        return current

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, name: object) -> bool:
        return name in self._records

    # --- Persistence ---

    def save(self) -> bool:
        """Persist name/address pairs of every record, overwriting prior state.

        Returns:
            True if the state was written
        """
        state = {name: record.to_persisted() for name, record in self._records.items()}
        try:
            self.store.save(state)
        except PersistenceError as e:
            logger.error(f"Error saving MCP server state: {e}")
            return False
        return True

    def load(self) -> int:
        """Register every persisted server not already known as discovered.

        Unreadable or malformed state counts as no prior state.

        Returns:
            Number of servers added
        """
        try:
            state = self.store.load()
        except PersistenceError as e:
            logger.warning(f"Error loading MCP server state: {e}")
            return 0

        added = 0
        for name, entry in state.items():
            if name in self._records:
                continue
            try:
                self.register_discovered(name, entry.url, server_id=entry.id)
            except ValueError as e:
                logger.warning(f"Skipping persisted server: {e}")
                continue
            added += 1
            logger.info(f"Loaded MCP server from state: {name} at {entry.url}")
        return added

    def reset(self) -> bool:
        """Reset persisted state to an empty record set."""
        try:
            self.store.clear()
        except PersistenceError as e:
            logger.error(f"Error clearing MCP server state: {e}")
            return False
        return True
