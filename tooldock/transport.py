"""HTTP control channel client: tool listing, execution and readiness probes."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from tooldock.config import DEFAULT_REQUEST_TIMEOUT
from tooldock.schemas import ExecuteRequest, ExecuteResponse, ToolDescriptor, ToolListResponse

logger = logging.getLogger(__name__)

TOOLS_PATH = "/tools"
EXECUTE_PATH = "/execute"

# Probes should fail fast; the supervisor retries them
PROBE_TIMEOUT = 2.0


class TransportError(Exception):
    """Raised on network failure, timeout, HTTP error or malformed response."""

    pass


class CallCancelled(Exception):
    """Raised when a caller cancels a pending request through its CancelToken."""

    pass


class CancelToken:
    """Caller-held handle that aborts a pending request when cancelled."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class HttpTransport:
    """Owns the shared httpx client used to talk to every server."""

    def __init__(
        self,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the transport.

        Args:
            timeout: Bound on every outbound call, in seconds
            transport: Optional httpx transport (e.g. httpx.MockTransport in tests)
        """
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    def client_for(self, url: str) -> ServerClient:
        return ServerClient(self._client, url)

    async def aclose(self) -> None:
        await self._client.aclose()


class ServerClient:
    """Control channel calls against one server endpoint."""

    def __init__(self, http: httpx.AsyncClient, base_url: str):
        self._http = http
        self.base_url = base_url.rstrip("/")

    async def list_tools(self) -> list[ToolDescriptor]:
        """Fetch the server's tool list from GET /tools."""
        data = await self._request("GET", TOOLS_PATH)
        try:
            return ToolListResponse.model_validate(data).tools
        except ValidationError as e:
            raise TransportError(f"Malformed tool list from {self.base_url}: {e}") from e

    async def execute(
        self,
        request: ExecuteRequest,
        cancel_token: CancelToken | None = None,
    ) -> ExecuteResponse:
        """Run a tool via POST /execute.

        Args:
            request: Local tool name, correlation id and argument payload
            cancel_token: Optional token; cancelling it aborts the pending request

        Returns:
            The server's ExecuteResponse

        Raises:
            TransportError: On network failure, timeout or malformed response
            CallCancelled: If the token was cancelled before a response arrived
        """
        if cancel_token is not None and cancel_token.cancelled:
            raise CallCancelled(f"Call {request.id} cancelled before dispatch")

        call = asyncio.ensure_future(
            self._request("POST", EXECUTE_PATH, json=request.model_dump())
        )
        if cancel_token is None:
            data = await call
        else:
            cancelled = asyncio.ensure_future(cancel_token.wait())
            try:
                await asyncio.wait({call, cancelled}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                cancelled.cancel()
                if not call.done():
                    call.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await call
            if call.cancelled():
                raise CallCancelled(f"Call {request.id} cancelled")
            data = call.result()

        try:
            return ExecuteResponse.model_validate(data)
        except ValidationError as e:
            raise TransportError(f"Malformed execute response from {self.base_url}: {e}") from e

    async def probe(self, path: str = TOOLS_PATH) -> bool:
        """Return True if the server answers path with a success status."""
        try:
            response = await self._http.get(f"{self.base_url}{path}", timeout=PROBE_TIMEOUT)
        except httpx.HTTPError as e:
            logger.debug(f"Probe of {self.base_url}{path} failed: {e}")
            return False
        return response.is_success

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = await self._http.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {url} timed out") from e
        except httpx.HTTPStatusError as e:
            raise TransportError(f"{url} returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {url} failed: {e}") from e
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {url}: {e}") from e
