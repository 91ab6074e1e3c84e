"""Routes qualified tool calls to the server that owns them."""

from __future__ import annotations

import json
import logging

from tooldock.catalog import ToolCatalog, split_qualified_name
from tooldock.registry import ServerRegistry
from tooldock.schemas import (
    CapabilityDescriptor,
    ExecuteRequest,
    FailureKind,
    InvocationRequest,
    InvocationResult,
)
from tooldock.transport import CallCancelled, CancelToken, HttpTransport, TransportError

logger = logging.getLogger(__name__)

# Characters of tool output included in log lines
LOG_PREVIEW_CHARS = 100


class InvocationRouter:
    """Dispatches each invocation once; retries are left to the caller."""

    def __init__(self, registry: ServerRegistry, catalog: ToolCatalog, http: HttpTransport):
        self.registry = registry
        self.catalog = catalog
        self.http = http

    async def invoke(
        self,
        request: InvocationRequest,
        cancel_token: CancelToken | None = None,
    ) -> InvocationResult:
        """Forward a tool call and normalize the outcome.

        Args:
            request: Call addressed as `<server>.<tool>`
            cancel_token: Optional token to abort the pending call

        Returns:
            InvocationResult echoing the request id; failures are reported in
            its failure/kind fields, never raised
        """
        parts = split_qualified_name(request.qualified_name)
        if parts is None:
            return InvocationResult.fail(
                request.id,
                FailureKind.MALFORMED_NAME,
                f"Invalid tool name format: {request.qualified_name}. "
                "Expected format: server.toolName",
            )
        server_name, local_name = parts

        record = self.registry.lookup(server_name)
        if record is None:
            return InvocationResult.fail(
                request.id,
                FailureKind.UNKNOWN_SERVER,
                f"MCP server not found: {server_name}",
            )

        descriptor = self.catalog.find(request.qualified_name)
        if descriptor is not None:
            problem = _check_arguments(descriptor, request.argument_payload)
            if problem:
                return InvocationResult.fail(request.id, FailureKind.INVALID_ARGUMENTS, problem)

        call = ExecuteRequest(id=request.id, name=local_name, arguments=request.argument_payload)
        try:
            response = await self.http.client_for(record.url).execute(call, cancel_token)
        except CallCancelled as e:
            logger.info(f"MCP tool call cancelled: {request.qualified_name} ({e})")
            return InvocationResult.fail(request.id, FailureKind.CANCELLED, str(e))
        except TransportError as e:
            logger.warning(f"Error executing MCP tool {request.qualified_name}: {e}")
            return InvocationResult.fail(
                request.id,
                FailureKind.TRANSPORT_ERROR,
                f"Error executing MCP tool: {e}",
            )

        if response.id != request.id:
            logger.warning(
                f"MCP server {server_name} answered call {request.id} with id {response.id}"
            )
            return InvocationResult.fail(
                request.id,
                FailureKind.PROTOCOL_VIOLATION,
                f"MCP server {server_name} returned id {response.id!r} for call {request.id!r}",
            )

        logger.info(
            f"MCP tool executed: {request.qualified_name}, "
            f"result: {response.result[:LOG_PREVIEW_CHARS]}..."
        )
        return InvocationResult(
            id=response.id,
            output=response.result,
            failure=response.error,
            kind=FailureKind.TOOL_ERROR if response.error is not None else None,
        )


def _check_arguments(descriptor: CapabilityDescriptor, payload: str) -> str | None:
    """Validate an argument payload against the tool's parameter schema."""
    try:
        arguments = json.loads(payload) if payload.strip() else {}
    except json.JSONDecodeError as e:
        return f"Arguments for {descriptor.qualified_name} are not valid JSON: {e}"

    problems = descriptor.parameters.check(arguments)
    if problems:
        return f"Invalid arguments for {descriptor.qualified_name}: " + "; ".join(problems)
    return None
