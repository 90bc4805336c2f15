"""Tool dispatcher: runs the tool calls of one model turn."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from agentloop.agent.events import EventEmitter, EventType
from agentloop.llm.client import ToolCall
from agentloop.tools.base import (
    Tool,
    ToolErrorCode,
    ToolProvider,
    ToolResult,
    ToolValidationError,
    validate_arguments,
)

logger = logging.getLogger(__name__)


@dataclass
class ToolCallRecord:
    """One executed tool call and its outcome."""

    id: str
    tool_name: str
    arguments: dict[str, Any]
    result: ToolResult
    timestamp: float = field(default_factory=time.time)
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.result.success


class ToolDispatcher:
    """Executes tool calls against a tool provider.

    Every call runs inside its own failure boundary: malformed or invalid
    arguments, unknown tools, timeouts and exceptions raised by the tool all
    become failed :class:`ToolResult` values instead of propagating.
    """

    def __init__(
        self,
        tools: ToolProvider,
        parallel: bool = True,
        continue_on_error: bool = True,
        tool_timeout: Optional[float] = 30.0,
    ):
        """Initialize the dispatcher.

        Args:
            tools: Provider used to resolve tool names
            parallel: Run the calls of one turn concurrently when there are several
            continue_on_error: When False, sequential dispatch stops at the first failure
            tool_timeout: Seconds allowed for each tool call (None disables)
        """
        self.tools = tools
        self.parallel = parallel
        self.continue_on_error = continue_on_error
        self.tool_timeout = tool_timeout

    async def execute(
        self,
        tool_calls: list[ToolCall],
        context: Any = None,
        emitter: Optional[EventEmitter] = None,
    ) -> list[ToolCallRecord]:
        """Execute ``tool_calls`` and return their records in request order.

        Args:
            tool_calls: Calls requested by the model
            context: Opaque tool context passed to every tool
            emitter: Receives tool_call_started / completed / error events

        Returns:
            One record per executed call, ordered by request index
        """
        emitter = emitter or EventEmitter(None)

        if self.parallel and len(tool_calls) > 1:
            return list(await asyncio.gather(*(self._execute_one(tc, context, emitter) for tc in tool_calls)))

        records: list[ToolCallRecord] = []
        for tool_call in tool_calls:
            record = await self._execute_one(tool_call, context, emitter)
            records.append(record)
            if not record.success and not self.continue_on_error:
                logger.info("Stopping tool dispatch after failed call %s", record.tool_name)
                break
        return records

    async def _execute_one(
        self,
        tool_call: ToolCall,
        context: Any,
        emitter: EventEmitter,
    ) -> ToolCallRecord:
        start = time.perf_counter()
        timestamp = time.time()
        tool_name = tool_call.name

        arguments: dict[str, Any] = {}
        parse_error: Optional[str] = None
        try:
            arguments = tool_call.parse_arguments()
        except ValueError as e:
            parse_error = f"Invalid arguments for tool '{tool_name}': {e}"

        await emitter.emit(
            EventType.TOOL_CALL_STARTED,
            tool_call_id=tool_call.id,
            tool_name=tool_name,
            arguments=arguments,
        )

        if parse_error is not None:
            result = ToolResult.failure(ToolErrorCode.ARGUMENT_PARSE_ERROR, parse_error)
        else:
            tool = self.tools.get_tool(tool_name)
            if tool is None:
                result = ToolResult.failure(ToolErrorCode.TOOL_NOT_FOUND, f"Tool '{tool_name}' is not registered")
            else:
                try:
                    arguments = validate_arguments(tool.schema, arguments)
                except ToolValidationError as e:
                    result = ToolResult.failure(ToolErrorCode.VALIDATION_ERROR, str(e))
                else:
                    result = await self._invoke(tool, arguments, context)

        duration_ms = (time.perf_counter() - start) * 1000

        if result.success:
            await emitter.emit(
                EventType.TOOL_CALL_COMPLETED,
                tool_call_id=tool_call.id,
                tool_name=tool_name,
                success=True,
                duration_ms=duration_ms,
                result=result.data,
            )
        else:
            error_message = result.error.message if result.error else result.content
            logger.warning("Tool %s failed: %s", tool_name, error_message)
            await emitter.emit(
                EventType.TOOL_ERROR,
                tool_call_id=tool_call.id,
                tool_name=tool_name,
                error=error_message,
                code=result.error.code if result.error else ToolErrorCode.EXECUTION_ERROR.value,
                recoverable=self.continue_on_error,
            )

        return ToolCallRecord(
            id=tool_call.id,
            tool_name=tool_name,
            arguments=arguments,
            result=result,
            timestamp=timestamp,
            duration_ms=duration_ms,
        )

    async def _invoke(self, tool: Tool, arguments: dict[str, Any], context: Any) -> ToolResult:
        try:
            return await asyncio.wait_for(tool.execute(arguments, context), timeout=self.tool_timeout)
        except asyncio.TimeoutError:
            return ToolResult.failure(
                ToolErrorCode.TIMEOUT,
                f"Tool execution timed out after {self.tool_timeout}s: {tool.name}",
            )
        except Exception as e:
            message = str(e) or type(e).__name__
            return ToolResult.failure(ToolErrorCode.EXECUTION_ERROR, f"Tool execution failed: {message}")
