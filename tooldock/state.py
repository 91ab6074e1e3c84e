"""Durable record of known servers, shared between orchestrator runs."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Mapping, Protocol

from pydantic import TypeAdapter, ValidationError

from tooldock.config import DEFAULT_STATE_FILE
from tooldock.schemas import PersistedServer

logger = logging.getLogger(__name__)

_STATE_ADAPTER = TypeAdapter(dict[str, PersistedServer])


class PersistenceError(Exception):
    """Raised when server state cannot be read or written."""

    pass


class StateStore(Protocol):
    """Load/save interface for persisted server state."""

    def load(self) -> dict[str, PersistedServer]:
        ...

    def save(self, servers: Mapping[str, PersistedServer]) -> None:
        ...

    def clear(self) -> None:
        ...


class JsonFileStateStore:
    """State store backed by a JSON file mapping server name to {id, url}."""

    def __init__(self, path: Path | str | None = None):
        """Initialize the store.

        Args:
            path: State file path (defaults to .mcp-servers.json in the working directory)
        """
        self.path = Path(path) if path else Path.cwd() / DEFAULT_STATE_FILE

    def load(self) -> dict[str, PersistedServer]:
        """Read persisted servers.

        Returns:
            Mapping of server name to persisted entry; empty if the file is absent

        Raises:
            PersistenceError: If the file exists but is unreadable or invalid
        """
        if not self.path.exists():
            return {}

        try:
            raw = self.path.read_bytes()
        except OSError as e:
            raise PersistenceError(f"Cannot read {self.path}: {e}") from e

        try:
            return _STATE_ADAPTER.validate_json(raw)
        except (ValidationError, UnicodeDecodeError) as e:
            raise PersistenceError(f"Invalid server state in {self.path}: {e}") from e

    def save(self, servers: Mapping[str, PersistedServer]) -> None:
        """Overwrite the state file with the given servers."""
        payload = {name: entry.model_dump() for name, entry in servers.items()}
        self._write(json.dumps(payload, indent=2))

    def clear(self) -> None:
        """Reset the state file to an empty record set."""
        self._write("{}")

    def _write(self, content: str) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(content)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"Cannot write {self.path}: {e}") from e
        logger.debug(f"Wrote server state to {self.path}")


class MemoryStateStore:
    """In-process state store, for tests and embedding."""

    def __init__(self, servers: Mapping[str, PersistedServer] | None = None):
        self._servers: dict[str, PersistedServer] = dict(servers or {})

    def load(self) -> dict[str, PersistedServer]:
        return dict(self._servers)

    def save(self, servers: Mapping[str, PersistedServer]) -> None:
        self._servers = dict(servers)

    def clear(self) -> None:
        self._servers = {}
