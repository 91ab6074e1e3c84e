"""Tests for control channel and parameter schemas."""

import pytest
from pydantic import ValidationError

from tooldock.schemas import (
    AnySchema,
    ArraySchema,
    CapabilityDescriptor,
    FailureKind,
    InvocationRequest,
    InvocationResult,
    ObjectSchema,
    StringSchema,
    ToolDescriptor,
    ToolListResponse,
)


class TestParameterSchema:
    """Test the tagged parameter schema variant."""

    def test_parses_nested_schema_by_type(self):
        """Each node is parsed into the variant named by its type."""
        descriptor = ToolDescriptor.model_validate({
            "name": "search",
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string"},
                    "tags": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["query"],
            },
        })

        params = descriptor.parameters
        assert isinstance(params, ObjectSchema)
        assert isinstance(params.properties["query"], StringSchema)
        assert isinstance(params.properties["tags"], ArraySchema)
        assert isinstance(params.properties["tags"].items, StringSchema)

    def test_untyped_node_accepts_anything(self):
        """Nodes without a single known type fall back to AnySchema."""
        descriptor = ToolDescriptor.model_validate({
            "name": "t",
            "parameters": {
                "type": "object",
                "properties": {"value": {"type": ["string", "null"]}, "blob": {}},
            },
        })

        assert isinstance(descriptor.parameters.properties["value"], AnySchema)
        assert descriptor.parameters.check({"value": 3, "blob": [1, 2]}) == []

    def test_missing_parameters_default_to_empty_object(self):
        """A tool without parameters takes an empty object."""
        descriptor = ToolDescriptor(name="ping")
        assert isinstance(descriptor.parameters, ObjectSchema)
        assert descriptor.parameters.check({}) == []

    def test_check_reports_missing_required_and_wrong_types(self):
        """Validation lists every problem with its path."""
        schema = ToolDescriptor.model_validate({
            "name": "t",
            "parameters": {
                "type": "object",
                "properties": {
                    "count": {"type": "integer", "minimum": 1},
                    "flag": {"type": "boolean"},
                },
                "required": ["count", "name"],
            },
        }).parameters

        problems = schema.check({"count": 0, "flag": "yes"})

        assert any("missing required property 'name'" in p for p in problems)
        assert any("arguments.count" in p and "minimum" in p for p in problems)
        assert any("arguments.flag" in p and "expected boolean" in p for p in problems)

    def test_booleans_are_not_numbers(self):
        """True is rejected where a number is expected."""
        schema = ToolDescriptor.model_validate({
            "name": "t",
            "parameters": {"type": "object", "properties": {"n": {"type": "number"}}},
        }).parameters

        assert schema.check({"n": True})
        assert schema.check({"n": 2.5}) == []

    def test_enum_is_enforced(self):
        """Values outside enum are rejected."""
        schema = ToolDescriptor.model_validate({
            "name": "t",
            "parameters": {
                "type": "object",
                "properties": {"mode": {"type": "string", "enum": ["fast", "slow"]}},
            },
        }).parameters

        assert schema.check({"mode": "fast"}) == []
        assert schema.check({"mode": "medium"})

    def test_array_items_are_checked(self):
        """Array items are validated with their index in the path."""
        schema = ToolDescriptor.model_validate({
            "name": "t",
            "parameters": {
                "type": "object",
                "properties": {"ids": {"type": "array", "items": {"type": "integer"}}},
            },
        }).parameters

        problems = schema.check({"ids": [1, "two"]})
        assert problems == ["arguments.ids[1]: expected integer, got str"]

    def test_json_schema_export_keeps_unknown_keywords(self):
        """Keywords the variant does not model survive export."""
        descriptor = ToolDescriptor.model_validate({
            "name": "t",
            "parameters": {
                "type": "object",
                "properties": {"path": {"type": "string", "format": "uri"}},
                "additionalProperties": False,
            },
        })

        exported = descriptor.parameters.to_json_schema()

        assert exported["additionalProperties"] is False
        assert exported["properties"]["path"] == {"type": "string", "format": "uri"}
        assert "required" not in exported


class TestToolListResponse:
    """Test GET /tools body parsing."""

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            ToolListResponse.model_validate({"tools": [{"name": ""}]})

    def test_missing_tools_is_empty(self):
        assert ToolListResponse.model_validate({}).tools == []


class TestInvocationModels:
    """Test invocation request/result models."""

    def test_request_accepts_wire_names(self):
        """Requests can be built from the agent's {id, name, arguments} shape."""
        request = InvocationRequest.model_validate(
            {"id": "1", "name": "alpha.x", "arguments": '{"a": 1}'}
        )
        assert request.qualified_name == "alpha.x"
        assert request.argument_payload == '{"a": 1}'

    def test_request_accepts_field_names(self):
        request = InvocationRequest(id="1", qualified_name="alpha.x")
        assert request.argument_payload == "{}"

    def test_fail_builds_failure_result(self):
        result = InvocationResult.fail("9", FailureKind.UNKNOWN_SERVER, "nope")
        assert result.ok is False
        assert result.kind == FailureKind.UNKNOWN_SERVER
        assert result.to_wire() == {"id": "9", "result": "", "error": "nope"}

    def test_success_wire_form_has_no_error(self):
        result = InvocationResult(id="1", output="done")
        assert result.ok is True
        assert result.to_wire() == {"id": "1", "result": "done"}


class TestCapabilityDescriptor:
    """Test export to function declarations."""

    def test_function_declaration_shape(self):
        descriptor = CapabilityDescriptor(
            qualified_name="alpha.x",
            server="alpha",
            local_name="x",
            description="[alpha] Does x",
        )

        declaration = descriptor.to_function_declaration().model_dump()

        assert declaration == {
            "type": "function",
            "function": {
                "name": "alpha.x",
                "description": "[alpha] Does x",
                "parameters": {"type": "object", "properties": {}},
            },
        }
