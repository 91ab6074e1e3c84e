"""Pydantic schemas for the control channel, the catalog and tool invocations."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator


class FailureKind(str, Enum):
    """Why an invocation did not produce a server result."""

    MALFORMED_NAME = "MalformedName"
    UNKNOWN_SERVER = "UnknownServer"
    TRANSPORT_ERROR = "TransportError"
    PROTOCOL_VIOLATION = "ProtocolViolation"
    INVALID_ARGUMENTS = "InvalidArguments"
    CANCELLED = "Cancelled"
    TOOL_ERROR = "ToolError"
    DISABLED = "Disabled"


# --- Parameter schemas ---


class _SchemaNode(BaseModel):
    """Common part of every parameter schema node.

    Unknown JSON Schema keywords are kept so the schema can be exported
    to the agent unchanged.
    """

    model_config = ConfigDict(extra="allow")

    description: str | None = None
    enum: list[Any] | None = None

    def check(self, value: Any, path: str = "arguments") -> list[str]:
        """Return a list of problems found validating value against this node."""
        problems = self._check_value(value, path)
        if not problems and self.enum is not None and value not in self.enum:
            problems.append(f"{path}: {value!r} is not one of {self.enum!r}")
        return problems

    def _check_value(self, value: Any, path: str) -> list[str]:
        return []

    def to_json_schema(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class _BoundedNode(_SchemaNode):
    minimum: float | None = None
    maximum: float | None = None

    def _check_bounds(self, value: float, path: str) -> list[str]:
        if self.minimum is not None and value < self.minimum:
            return [f"{path}: {value} is less than minimum {self.minimum}"]
        if self.maximum is not None and value > self.maximum:
            return [f"{path}: {value} is greater than maximum {self.maximum}"]
        return []


class StringSchema(_SchemaNode):
    type: Literal["string"]

    def _check_value(self, value: Any, path: str) -> list[str]:
        if not isinstance(value, str):
            return [f"{path}: expected string, got {type(value).__name__}"]
        return []


class NumberSchema(_BoundedNode):
    type: Literal["number"]

    def _check_value(self, value: Any, path: str) -> list[str]:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return [f"{path}: expected number, got {type(value).__name__}"]
        return self._check_bounds(value, path)


class IntegerSchema(_BoundedNode):
    type: Literal["integer"]

    def _check_value(self, value: Any, path: str) -> list[str]:
        if isinstance(value, bool) or not isinstance(value, int):
            return [f"{path}: expected integer, got {type(value).__name__}"]
        return self._check_bounds(value, path)


class BooleanSchema(_SchemaNode):
    type: Literal["boolean"]

    def _check_value(self, value: Any, path: str) -> list[str]:
        if not isinstance(value, bool):
            return [f"{path}: expected boolean, got {type(value).__name__}"]
        return []


class NullSchema(_SchemaNode):
    type: Literal["null"]

    def _check_value(self, value: Any, path: str) -> list[str]:
        if value is not None:
            return [f"{path}: expected null, got {type(value).__name__}"]
        return []


class ArraySchema(_SchemaNode):
    type: Literal["array"]
    items: ParameterSchema | None = None

    def _check_value(self, value: Any, path: str) -> list[str]:
        if not isinstance(value, list):
            return [f"{path}: expected array, got {type(value).__name__}"]
        if self.items is None:
            return []
        problems: list[str] = []
        for index, item in enumerate(value):
            problems.extend(self.items.check(item, f"{path}[{index}]"))
        return problems


class ObjectSchema(_SchemaNode):
    type: Literal["object"] = "object"
    properties: dict[str, ParameterSchema] = Field(default_factory=dict)
    required: list[str] | None = None

    def _check_value(self, value: Any, path: str) -> list[str]:
        if not isinstance(value, dict):
            return [f"{path}: expected object, got {type(value).__name__}"]
        problems = [
            f"{path}: missing required property '{key}'"
            for key in self.required or []
            if key not in value
        ]
        for key, schema in self.properties.items():
            if key in value:
                problems.extend(schema.check(value[key], f"{path}.{key}"))
        return problems


class AnySchema(_SchemaNode):
    """Schema node without a single recognised type; accepts any value."""

    type: Any = None


_TAGGED_TYPES = frozenset({"string", "number", "integer", "boolean", "null", "array", "object"})


def _schema_tag(value: Any) -> str:
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    if isinstance(kind, str) and kind in _TAGGED_TYPES:
        return kind
    return "any"


ParameterSchema = Annotated[
    Union[
        Annotated[StringSchema, Tag("string")],
        Annotated[NumberSchema, Tag("number")],
        Annotated[IntegerSchema, Tag("integer")],
        Annotated[BooleanSchema, Tag("boolean")],
        Annotated[NullSchema, Tag("null")],
        Annotated[ArraySchema, Tag("array")],
        Annotated[ObjectSchema, Tag("object")],
        Annotated[AnySchema, Tag("any")],
    ],
    Discriminator(_schema_tag),
]

ArraySchema.model_rebuild()
ObjectSchema.model_rebuild()


# --- Control channel ---


class ToolDescriptor(BaseModel):
    """A tool as a server lists it on GET /tools."""

    name: str = Field(..., min_length=1)
    description: str = ""
    parameters: ParameterSchema = Field(default_factory=ObjectSchema)


class ToolListResponse(BaseModel):
    """Body of GET /tools."""

    tools: list[ToolDescriptor] = Field(default_factory=list)


class ExecuteRequest(BaseModel):
    """Body of POST /execute."""

    id: str
    name: str
    arguments: str = "{}"


class ExecuteResponse(BaseModel):
    """Body returned by POST /execute."""

    id: str
    result: str = ""
    error: str | None = None

    @field_validator("result", mode="before")
    @classmethod
    def _null_result_is_empty(cls, value: Any) -> Any:
        return "" if value is None else value


# --- Catalog ---


class FunctionSpec(BaseModel):
    name: str
    description: str
    parameters: dict[str, Any]


class FunctionDeclaration(BaseModel):
    """Function-style tool declaration handed to the calling agent."""

    type: Literal["function"] = "function"
    function: FunctionSpec


class CapabilityDescriptor(BaseModel):
    """A tool in the catalog, namespaced by the server that owns it."""

    qualified_name: str
    server: str
    local_name: str
    description: str
    parameters: ParameterSchema = Field(default_factory=ObjectSchema)

    def to_function_declaration(self) -> FunctionDeclaration:
        return FunctionDeclaration(
            function=FunctionSpec(
                name=self.qualified_name,
                description=self.description,
                parameters=self.parameters.to_json_schema(),
            )
        )


# --- Invocation ---


class InvocationRequest(BaseModel):
    """A tool call issued by the agent, addressed by qualified name."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    qualified_name: str = Field(..., alias="name")
    argument_payload: str = Field(default="{}", alias="arguments")


class InvocationResult(BaseModel):
    """Outcome of an invocation; failures are values, never exceptions."""

    id: str
    output: str = ""
    failure: str | None = None
    kind: FailureKind | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def fail(cls, request_id: str, kind: FailureKind, message: str) -> InvocationResult:
        return cls(id=request_id, failure=message, kind=kind)

    def to_wire(self) -> dict[str, Any]:
        """Render in the {id, result, error?} shape the agent consumes."""
        payload: dict[str, Any] = {"id": self.id, "result": self.output}
        if self.failure is not None:
            payload["error"] = self.failure
        return payload


# --- Persisted state ---


class PersistedServer(BaseModel):
    """One entry of the durable server state file."""

    id: str
    url: str
