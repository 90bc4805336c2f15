"""Tests for the tool dispatcher."""

import asyncio
import time

import pytest

from agentloop.agent.dispatcher import ToolDispatcher
from agentloop.agent.events import EventEmitter, EventType, StreamEvent
from agentloop.llm.client import ToolCall


@pytest.mark.asyncio
async def test_successful_call(registry):
    """Test a single successful call."""
    dispatcher = ToolDispatcher(registry)

    records = await dispatcher.execute([ToolCall(id="c1", name="add", arguments='{"a": 4, "b": 5}')])

    assert len(records) == 1
    assert records[0].id == "c1"
    assert records[0].tool_name == "add"
    assert records[0].result.success is True
    assert records[0].result.content == "9"
    assert records[0].duration_ms >= 0


@pytest.mark.asyncio
async def test_malformed_arguments(registry):
    """Malformed JSON becomes ARGUMENT_PARSE_ERROR, not an exception."""
    dispatcher = ToolDispatcher(registry)

    records = await dispatcher.execute([ToolCall(id="c1", name="add", arguments='{"a": 4,')])

    assert records[0].result.success is False
    assert records[0].result.error.code == "ARGUMENT_PARSE_ERROR"
    assert records[0].arguments == {}


@pytest.mark.asyncio
async def test_non_object_arguments(registry):
    """Test that a JSON array is rejected as arguments."""
    dispatcher = ToolDispatcher(registry)

    records = await dispatcher.execute([ToolCall(id="c1", name="echo", arguments="[1, 2]")])

    assert records[0].result.error.code == "ARGUMENT_PARSE_ERROR"


@pytest.mark.asyncio
async def test_unknown_tool(registry):
    """Test TOOL_NOT_FOUND for an unregistered name."""
    dispatcher = ToolDispatcher(registry)

    records = await dispatcher.execute([ToolCall(id="c1", name="nope")])

    assert records[0].result.success is False
    assert records[0].result.error.code == "TOOL_NOT_FOUND"


@pytest.mark.asyncio
async def test_tool_exception(registry):
    """Test that a raising tool becomes EXECUTION_ERROR."""
    dispatcher = ToolDispatcher(registry)

    records = await dispatcher.execute([ToolCall(id="c1", name="explode")])

    assert records[0].result.success is False
    assert records[0].result.error.code == "EXECUTION_ERROR"
    assert "boom" in records[0].result.error.message


@pytest.mark.asyncio
async def test_bad_argument_names_are_execution_errors(registry):
    """Test that undeclared arguments pass validation but fail inside the boundary."""
    dispatcher = ToolDispatcher(registry)

    records = await dispatcher.execute([ToolCall(id="c1", name="echo", arguments='{"text": "hi", "wrong": 1}')])

    assert records[0].result.error.code == "EXECUTION_ERROR"


@pytest.mark.asyncio
async def test_parallel_isolation_and_order(registry):
    """A failing call never blocks its siblings; records keep request order."""
    dispatcher = ToolDispatcher(registry, parallel=True)
    tool_calls = [
        ToolCall(id="slow", name="slow", arguments='{"delay": 0.05}'),
        ToolCall(id="fail", name="explode"),
        ToolCall(id="fast", name="echo", arguments='{"text": "quick"}'),
    ]

    records = await dispatcher.execute(tool_calls)

    assert [r.id for r in records] == ["slow", "fail", "fast"]
    assert [r.result.success for r in records] == [True, False, True]


@pytest.mark.asyncio
async def test_parallel_runs_concurrently(registry):
    """Test that parallel dispatch overlaps slow calls."""
    dispatcher = ToolDispatcher(registry, parallel=True)
    tool_calls = [ToolCall(id=str(i), name="slow", arguments='{"delay": 0.1}') for i in range(5)]

    loop = asyncio.get_running_loop()
    start = loop.time()
    records = await dispatcher.execute(tool_calls)
    elapsed = loop.time() - start

    assert len(records) == 5
    assert elapsed < 0.4


@pytest.mark.asyncio
async def test_parallel_blocking_tools_run_in_threads(registry):
    """Test that synchronous tools do not block their siblings or the event loop."""

    @registry.tool(description="Block the calling thread")
    def block(seconds: float) -> str:
        time.sleep(seconds)
        return "slept"

    dispatcher = ToolDispatcher(registry, parallel=True)
    tool_calls = [ToolCall(id=str(i), name="block", arguments='{"seconds": 0.3}') for i in range(4)]

    loop = asyncio.get_running_loop()
    start = loop.time()
    records = await dispatcher.execute(tool_calls)
    elapsed = loop.time() - start

    assert [r.result.content for r in records] == ["slept"] * 4
    assert elapsed < 0.6


@pytest.mark.asyncio
async def test_tool_timeout(registry):
    """Test that a hung tool becomes a TIMEOUT failure while siblings succeed."""

    @registry.tool(description="Never returns in time")
    async def stall() -> str:
        await asyncio.sleep(10)
        return "late"

    dispatcher = ToolDispatcher(registry, parallel=True, tool_timeout=0.05)
    tool_calls = [
        ToolCall(id="hung", name="stall"),
        ToolCall(id="ok", name="echo", arguments='{"text": "fine"}'),
    ]

    records = await asyncio.wait_for(dispatcher.execute(tool_calls), timeout=2)

    assert records[0].result.success is False
    assert records[0].result.error.code == "TIMEOUT"
    assert "stall" in records[0].result.error.message
    assert records[1].result.content == "fine"


@pytest.mark.asyncio
async def test_missing_required_argument(registry):
    """Test that a missing required parameter is a VALIDATION_ERROR."""
    dispatcher = ToolDispatcher(registry)

    records = await dispatcher.execute([ToolCall(id="c1", name="add", arguments='{"a": 1}')])

    assert records[0].result.error.code == "VALIDATION_ERROR"
    assert records[0].result.error.message == "Missing required parameter: b"


@pytest.mark.asyncio
async def test_wrong_argument_type(registry):
    """Test that a JSON type mismatch is a VALIDATION_ERROR."""
    dispatcher = ToolDispatcher(registry)

    records = await dispatcher.execute([ToolCall(id="c1", name="add", arguments='{"a": "two", "b": 3}')])

    assert records[0].result.error.code == "VALIDATION_ERROR"
    assert "expected integer, got string" in records[0].result.error.message


@pytest.mark.asyncio
async def test_declared_defaults_are_filled(registry):
    """Test that omitted optional parameters take their declared default."""
    dispatcher = ToolDispatcher(registry)

    records = await dispatcher.execute([ToolCall(id="c1", name="slow", arguments="{}")])

    assert records[0].result.success is True
    assert records[0].arguments == {"delay": 0.05}


@pytest.mark.asyncio
async def test_sequential_order(registry):
    """Test that sequential dispatch runs calls one at a time in order."""
    order: list[str] = []

    @registry.tool(description="Record a label")
    async def mark(label: str) -> str:
        order.append(label)
        await asyncio.sleep(0)
        return label

    dispatcher = ToolDispatcher(registry, parallel=False)
    tool_calls = [ToolCall(id=label, name="mark", arguments=f'{{"label": "{label}"}}') for label in "abc"]

    records = await dispatcher.execute(tool_calls)

    assert order == ["a", "b", "c"]
    assert [r.result.content for r in records] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_sequential_halts_on_failure(registry):
    """Test continue_on_error=False stops after the first failed call."""
    dispatcher = ToolDispatcher(registry, parallel=False, continue_on_error=False)
    tool_calls = [
        ToolCall(id="1", name="echo", arguments='{"text": "ok"}'),
        ToolCall(id="2", name="explode"),
        ToolCall(id="3", name="echo", arguments='{"text": "never"}'),
    ]

    records = await dispatcher.execute(tool_calls)

    assert [r.id for r in records] == ["1", "2"]


@pytest.mark.asyncio
async def test_context_is_passed(registry):
    """Test that tools declaring ``context`` receive the caller's context."""

    @registry.tool(description="Who is asking")
    async def whoami(context) -> str:
        return context["user"]

    dispatcher = ToolDispatcher(registry)

    records = await dispatcher.execute([ToolCall(id="c1", name="whoami")], context={"user": "ada"})

    assert records[0].result.content == "ada"


@pytest.mark.asyncio
async def test_events_emitted_in_pairs(registry):
    """Every tool_call_started is followed by its completion or error."""
    events: list[StreamEvent] = []
    dispatcher = ToolDispatcher(registry, parallel=False)
    tool_calls = [
        ToolCall(id="ok", name="echo", arguments='{"text": "hi"}'),
        ToolCall(id="bad", name="explode"),
        ToolCall(id="parse", name="echo", arguments="{"),
    ]

    await dispatcher.execute(tool_calls, emitter=EventEmitter(events.append, "s"))

    assert [(e.type, e.data["tool_call_id"]) for e in events] == [
        (EventType.TOOL_CALL_STARTED, "ok"),
        (EventType.TOOL_CALL_COMPLETED, "ok"),
        (EventType.TOOL_CALL_STARTED, "bad"),
        (EventType.TOOL_ERROR, "bad"),
        (EventType.TOOL_CALL_STARTED, "parse"),
        (EventType.TOOL_ERROR, "parse"),
    ]
    assert events[3].data["code"] == "EXECUTION_ERROR"
    assert events[3].data["recoverable"] is True
