"""Launches tool server processes, watches them and shuts them down."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import random
import shlex
import socket
from collections import deque
from typing import Sequence

from tooldock.config import (
    DEFAULT_HOST,
    DEFAULT_PORT_ARG,
    DEFAULT_TERMINATE_TIMEOUT,
    ReadinessConfig,
)
from tooldock.registry import ServerRecord, ServerRegistry
from tooldock.transport import HttpTransport

logger = logging.getLogger(__name__)

# Lines of child output kept per server
OUTPUT_BUFFER_LINES = 200


class LaunchError(Exception):
    """Raised when a server cannot be spawned or never becomes ready."""

    pass


class PortAllocator:
    """Hands out listening ports, never the same one twice while it is held."""

    def __init__(self, port_range: tuple[int, int] = (8000, 9000), host: str = DEFAULT_HOST):
        self.low, self.high = port_range
        self.host = host
        self._allocated: set[int] = set()

    def allocate(self, preferred: int | None = None) -> int:
        """Reserve a free port, trying preferred first.

        Raises:
            LaunchError: If no port in the range is free
        """
        if preferred is not None and self._claim(preferred):
            return preferred
        if preferred is not None:
            logger.warning(f"Preferred port {preferred} unavailable, allocating another")

        span = self.high - self.low + 1
        start = random.randrange(span)
        for offset in range(span):
            port = self.low + (start + offset) % span
            if self._claim(port):
                return port
        raise LaunchError(f"No free port in range {self.low}-{self.high}")

    def release(self, port: int | None) -> None:
        if port is not None:
            self._allocated.discard(port)

    def _claim(self, port: int) -> bool:
        if port in self._allocated or not self._is_free(port):
            return False
        self._allocated.add(port)
        return True

    def _is_free(self, port: int) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((self.host, port))
            except OSError:
                return False
        return True


class ProcessSupervisor:
    """Owns the processes of launched servers and keeps the registry in step."""

    def __init__(
        self,
        registry: ServerRegistry,
        http: HttpTransport,
        readiness: ReadinessConfig | None = None,
        ports: PortAllocator | None = None,
        terminate_timeout: float = DEFAULT_TERMINATE_TIMEOUT,
    ):
        self.registry = registry
        self.http = http
        self.readiness = readiness or ReadinessConfig()
        self.ports = ports or PortAllocator()
        self.terminate_timeout = terminate_timeout
        self._output: dict[str, deque[str]] = {}
        self._tasks: set[asyncio.Task] = set()
        self._launching: set[str] = set()

    async def launch(
        self,
        name: str,
        command: str,
        args: Sequence[str] = (),
        endpoint_hint: int | None = None,
        *,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        port_arg: str = DEFAULT_PORT_ARG,
    ) -> ServerRecord:
        """Start a server process and register it once it answers the readiness probe.

        The allocated port is appended to args as `port_arg <port>`.

        Args:
            name: Server name
            command: Executable, optionally with leading arguments
            args: Configured arguments
            endpoint_hint: Preferred port
            env: Extra environment variables
            cwd: Working directory for the child
            port_arg: Flag preceding the port in the argument vector

        Returns:
            The owned ServerRecord

        Raises:
            LaunchError: If the process cannot be spawned or never becomes ready,
                or this supervisor already runs a server of that name
        """
        existing = self.registry.lookup(name)
        if name in self._launching or (
            existing is not None and existing.owned and existing.process.returncode is None
        ):
            raise LaunchError(f"MCP server {name} is already running")
        if existing is not None and existing.owned:
            # Exited but not yet pruned by its watcher
            self.registry.remove(name, only_if=existing)
            self.ports.release(existing.port)

        try:
            command_argv = shlex.split(command)
        except ValueError as e:
            raise LaunchError(f"Invalid command for {name}: {e}") from e
        if not command_argv:
            raise LaunchError(f"Empty command for {name}")

        self._launching.add(name)
        try:
            return await self._launch(name, [*command_argv, *args], endpoint_hint, env, cwd, port_arg)
        finally:
            self._launching.discard(name)

    async def _launch(
        self,
        name: str,
        base_argv: list[str],
        endpoint_hint: int | None,
        env: dict[str, str] | None,
        cwd: str | None,
        port_arg: str,
    ) -> ServerRecord:
        port = self.ports.allocate(endpoint_hint)
        url = f"http://{self.ports.host}:{port}"
        argv = [*base_argv, port_arg, str(port)]

        logger.info(f"Starting MCP server: {name}")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **(env or {})},
                cwd=cwd,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            self.ports.release(port)
            logger.error(f"Error starting MCP server {name}: {e}")
            raise LaunchError(f"Cannot spawn {name}: {e}") from e

        self._output[name] = deque(maxlen=OUTPUT_BUFFER_LINES)
        self._spawn(self._capture(name, process.stdout, "stdout"))
        self._spawn(self._capture(name, process.stderr, "stderr"))

        try:
            await self._wait_until_ready(name, url, process)
        except LaunchError:
            await self._stop_process(name, process)
            self.ports.release(port)
            tail = " | ".join(list(self._output.get(name, ()))[-5:])
            logger.error(f"MCP server {name} failed to start{f': {tail}' if tail else ''}")
            raise

        record = self.registry.register_owned(name, url, process, port=port)
        self._spawn(self._watch(record))
        logger.info(f"MCP server {name} started at {url}")
        return record

    async def terminate_all(self) -> None:
        """Terminate every owned process, then reset persisted state.

        Failures for one process are logged and do not stop the others.
        """
        owned = [record for record in self.registry.all() if record.owned]
        for record in owned:
            self.registry.remove(record.name, only_if=record)

        results = await asyncio.gather(
            *(self._stop_process(record.name, record.process) for record in owned),
            return_exceptions=True,
        )
        for record, result in zip(owned, results):
            if isinstance(result, Exception):
                logger.error(f"Error terminating MCP server {record.name}: {result}")
            self.ports.release(record.port)

        self.registry.reset()

    def recent_output(self, name: str) -> list[str]:
        """Most recent captured stdout/stderr lines of a launched server."""
        return list(self._output.get(name, ()))

    async def _wait_until_ready(
        self,
        name: str,
        url: str,
        process: asyncio.subprocess.Process,
    ) -> None:
        client = self.http.client_for(url)
        delay = self.readiness.initial_delay
        for attempt in range(1, self.readiness.attempts + 1):
            if process.returncode is not None:
                raise LaunchError(f"{name} exited with code {process.returncode} during startup")
            if await client.probe(self.readiness.path):
                logger.debug(f"{name} ready after {attempt} probe(s)")
                return
            await asyncio.sleep(delay)
            delay = min(delay * self.readiness.backoff, self.readiness.max_delay)
        raise LaunchError(
            f"{name} did not become ready after {self.readiness.attempts} probes of {url}"
        )

    async def _watch(self, record: ServerRecord) -> None:
        code = await record.process.wait()
        logger.info(f"MCP server {record.name} exited with code {code}")
        if self.registry.remove(record.name, only_if=record) is not None:
            self.ports.release(record.port)
            self.registry.save()

    async def _capture(self, name: str, stream: asyncio.StreamReader | None, stream_name: str) -> None:
        if stream is None:
            return
        buffer = self._output[name]
        try:
            async for raw in stream:
                line = raw.decode("utf-8", errors="replace").rstrip()
                if not line:
                    continue
                buffer.append(f"{stream_name}: {line}")
                logger.debug(f"MCP server {name} {stream_name}: {line}")
        except ValueError as e:
            logger.warning(f"Stopped capturing {stream_name} of {name}: {e}")

    async def _stop_process(self, name: str, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        logger.info(f"Terminating MCP server: {name}")
        try:
            process.terminate()
        except ProcessLookupError:
            return
        except OSError as e:
            logger.error(f"Error terminating MCP server {name}: {e}")
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=self.terminate_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"MCP server {name} ignored SIGTERM, killing")
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
