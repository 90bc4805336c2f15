"""Tests for the tool system."""

import json
import threading
from typing import Optional

import pytest

from agentloop.tools.base import (
    Tool,
    ToolErrorCode,
    ToolParameter,
    ToolResult,
    ToolSchema,
    ToolValidationError,
    validate_arguments,
)
from agentloop.tools.registry import ToolRegistry


def test_tool_schema_to_openai_format():
    """Test conversion of tool schema to OpenAI format."""
    schema = ToolSchema(
        name="test_tool",
        description="A test tool",
        parameters=[
            ToolParameter(
                name="required_param",
                type="string",
                description="A required parameter",
                required=True,
            ),
            ToolParameter(
                name="optional_param",
                type="integer",
                description="An optional parameter",
                required=False,
            ),
            ToolParameter(
                name="enum_param",
                type="string",
                description="Parameter with enum",
                required=True,
                enum=["option1", "option2"],
            ),
        ],
    )

    openai_format = schema.to_openai_format()

    assert openai_format["type"] == "function"
    assert openai_format["function"]["name"] == "test_tool"
    assert openai_format["function"]["description"] == "A test tool"

    params = openai_format["function"]["parameters"]
    assert params["type"] == "object"
    assert "required_param" in params["properties"]
    assert params["properties"]["optional_param"]["type"] == "integer"
    assert params["properties"]["enum_param"]["enum"] == ["option1", "option2"]
    assert set(params["required"]) == {"required_param", "enum_param"}


def test_tool_decorator_builds_schema():
    """Test that the decorator introspects hints, defaults and docstrings."""
    registry = ToolRegistry()

    @registry.tool(description="Search the knowledge base")
    async def search(query: str, limit: int = 5, exact: Optional[bool] = None, tags: list[str] | None = None) -> str:
        """Search documents.

        Args:
            query: Text to look for
            limit: Maximum hits
        """
        return query

    schema = registry.get_tool("search").schema
    params = {p.name: p for p in schema.parameters}

    assert schema.description == "Search the knowledge base"
    assert params["query"].type == "string"
    assert params["query"].required is True
    assert params["query"].description == "Text to look for"
    assert params["limit"].type == "integer"
    assert params["limit"].required is False
    assert params["exact"].type == "boolean"
    assert params["tags"].type == "array"
    assert params["tags"].description == "Parameter tags"
    assert params["limit"].default == 5
    assert params["exact"].default is None
    assert schema.to_openai_format()["function"]["parameters"]["properties"]["limit"]["default"] == 5


def test_context_parameter_hidden_from_schema():
    """Test that ``context`` is injected, not advertised."""
    registry = ToolRegistry()

    @registry.tool(description="Uses context")
    async def lookup(key: str, context=None) -> str:
        return key

    tool = registry.get_tool("lookup")
    assert [p.name for p in tool.schema.parameters] == ["key"]
    assert tool.accepts_context is True


def test_custom_name_and_duplicates():
    """Test explicit tool names and duplicate rejection."""
    registry = ToolRegistry()

    @registry.tool(description="Ping", name="network_ping")
    async def ping() -> str:
        return "pong"

    assert "network_ping" in registry
    assert "ping" not in registry
    with pytest.raises(ValueError):
        registry.tool(description="Again", name="network_ping")(ping)


def test_registry_definitions_and_removal():
    """Test listing, unregistering and clearing tools."""
    registry = ToolRegistry()

    @registry.tool(description="First")
    async def first() -> str:
        return "1"

    @registry.tool(description="Second")
    async def second() -> str:
        return "2"

    assert [schema.name for schema in registry.get_tool_definitions()] == ["first", "second"]
    registry.unregister("first")
    assert len(registry) == 1
    assert registry.get_tool("first") is None
    registry.clear()
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_tool_return_values_are_wrapped():
    """Test str, dict, None and ToolResult returns."""

    async def as_text() -> str:
        return "hello"

    def as_dict() -> dict:
        return {"answer": 42}

    async def as_none() -> None:
        return None

    async def as_result() -> ToolResult:
        return ToolResult.failure(ToolErrorCode.EXECUTION_ERROR, "nope")

    def make(fn) -> Tool:
        return Tool(schema=ToolSchema(name=fn.__name__, description="", parameters=[]), fn=fn)

    text_result = await make(as_text).execute({})
    dict_result = await make(as_dict).execute({})
    none_result = await make(as_none).execute({})
    failed = await make(as_result).execute({})

    assert text_result == ToolResult.ok("hello")
    assert dict_result.data == {"answer": 42}
    assert json.loads(dict_result.content) == {"answer": 42}
    assert none_result.content == ""
    assert failed.success is False
    assert failed.error.code == "EXECUTION_ERROR"


def test_tool_result_message_content():
    """Test the JSON shape of a tool message."""
    ok = json.loads(ToolResult.ok("5", data={"sum": 5}).to_message_content())
    failed = json.loads(ToolResult.failure(ToolErrorCode.TOOL_NOT_FOUND, "missing").to_message_content())

    assert ok == {"success": True, "content": "5", "data": {"sum": 5}}
    assert failed == {
        "success": False,
        "content": "missing",
        "error": {"code": "TOOL_NOT_FOUND", "message": "missing"},
    }


@pytest.mark.asyncio
async def test_sync_tool_runs_off_the_event_loop_thread():
    """Test that blocking tool functions are moved to a worker thread."""
    loop_thread = threading.get_ident()

    def where() -> str:
        return "worker" if threading.get_ident() != loop_thread else "loop"

    tool = Tool(schema=ToolSchema(name="where", description="", parameters=[]), fn=where)

    result = await tool.execute({})

    assert result.content == "worker"


def test_validate_arguments():
    """Test required, type, enum and default handling."""
    schema = ToolSchema(
        name="fetch",
        description="Fetch a page",
        parameters=[
            ToolParameter(name="url", type="string", description="Address"),
            ToolParameter(name="retries", type="integer", description="Attempts", required=False, default=2),
            ToolParameter(name="ratio", type="number", description="Sample ratio", required=False),
            ToolParameter(name="mode", type="string", description="Mode", required=False, enum=["fast", "full"]),
        ],
    )

    assert validate_arguments(schema, {"url": "x", "ratio": 1, "extra": True}) == {
        "url": "x",
        "retries": 2,
        "ratio": 1,
        "extra": True,
    }

    with pytest.raises(ToolValidationError) as exc_info:
        validate_arguments(schema, {"retries": 1})
    assert exc_info.value.parameter == "url"

    with pytest.raises(ToolValidationError, match="expected integer, got boolean"):
        validate_arguments(schema, {"url": "x", "retries": True})

    with pytest.raises(ToolValidationError, match="must be one of"):
        validate_arguments(schema, {"url": "x", "mode": "slow"})
