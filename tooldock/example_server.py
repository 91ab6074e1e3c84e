"""Reference tool server implementing the HTTP control channel."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from tooldock import __version__
from tooldock.schemas import (
    ExecuteRequest,
    ExecuteResponse,
    ObjectSchema,
    ToolDescriptor,
    ToolListResponse,
)

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Any]


@dataclass
class RegisteredTool:
    """A tool and the callable that runs it."""

    descriptor: ToolDescriptor
    handler: ToolHandler


class ToolServer:
    """Collects tools and serves them over GET /tools and POST /execute."""

    def __init__(self, name: str):
        self.name = name
        self._tools: dict[str, RegisteredTool] = {}

    def tool(
        self,
        name: str,
        description: str = "",
        parameters: dict[str, Any] | None = None,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Register the decorated function as a tool.

        The function receives the decoded argument object.
        """
        descriptor = ToolDescriptor.model_validate({
            "name": name,
            "description": description,
            "parameters": parameters or ObjectSchema().to_json_schema(),
        })

        def decorator(handler: ToolHandler) -> ToolHandler:
            self._tools[name] = RegisteredTool(descriptor=descriptor, handler=handler)
            return handler

        return decorator

    def descriptors(self) -> list[ToolDescriptor]:
        return [registered.descriptor for registered in self._tools.values()]

    def execute(self, request: ExecuteRequest) -> ExecuteResponse:
        """Run one tool call; every failure is reported in the error field."""
        registered = self._tools.get(request.name)
        if registered is None:
            return ExecuteResponse(id=request.id, error=f"Unknown tool: {request.name}")

        try:
            arguments = json.loads(request.arguments) if request.arguments.strip() else {}
        except json.JSONDecodeError as e:
            return ExecuteResponse(id=request.id, error=f"Arguments are not valid JSON: {e}")

        problems = registered.descriptor.parameters.check(arguments)
        if problems:
            return ExecuteResponse(id=request.id, error="; ".join(problems))

        try:
            value = registered.handler(arguments)
        except Exception as e:
            logger.error(f"Tool {request.name} failed: {e}", exc_info=True)
            return ExecuteResponse(id=request.id, error=f"{type(e).__name__}: {e}")

        result = value if isinstance(value, str) else json.dumps(value)
        return ExecuteResponse(id=request.id, result=result)

    def create_app(self) -> FastAPI:
        app = FastAPI(
            title=f"{self.name} tool server",
            description="Tool server exposing the ToolDock control channel",
            version=__version__,
        )

        @app.get("/tools", response_model=ToolListResponse, response_model_exclude_none=True)
        async def list_tools() -> ToolListResponse:
            return ToolListResponse(tools=self.descriptors())

        @app.post("/execute", response_model=ExecuteResponse)
        async def execute(request: ExecuteRequest) -> ExecuteResponse:
            logger.info(f"Received execute request: id={request.id}, tool={request.name}")
            return self.execute(request)

        @app.get("/health")
        async def health() -> dict[str, Any]:
            return {"status": "healthy", "server": self.name, "tools": len(self._tools)}

        @app.exception_handler(Exception)
        async def generic_exception_handler(request, exc: Exception) -> JSONResponse:
            logger.error(f"Unhandled exception: {exc}", exc_info=True)
            return JSONResponse(status_code=500, content={"detail": str(exc)})

        return app


def create_example_server() -> ToolServer:
    """Tool server with the echo and add tools."""
    server = ToolServer("example")

    @server.tool(
        "echo",
        description="Return the given text unchanged",
        parameters={
            "type": "object",
            "properties": {"text": {"type": "string", "description": "Text to echo"}},
            "required": ["text"],
        },
    )
    def echo(arguments: dict[str, Any]) -> str:
        return arguments["text"]

    @server.tool(
        "add",
        description="Add two numbers",
        parameters={
            "type": "object",
            "properties": {
                "a": {"type": "number"},
                "b": {"type": "number"},
            },
            "required": ["a", "b"],
        },
    )
    def add(arguments: dict[str, Any]) -> str:
        return str(arguments["a"] + arguments["b"])

    return server


def create_example_app() -> FastAPI:
    return create_example_server().create_app()
