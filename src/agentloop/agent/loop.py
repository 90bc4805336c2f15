"""ReAct loop controller.

The controller drives reason, act, observe iterations until the model
answers without requesting tools, the iteration cap is reached, the run is
cancelled, or an error ends it. Each run owns a fresh :class:`LoopState`;
the controller itself holds only configuration, so one controller (and one
model manager) can serve many concurrent runs.
"""

import asyncio
import dataclasses
import logging
import time
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from pydantic import ValidationError

from agentloop.agent.dispatcher import ToolCallRecord, ToolDispatcher
from agentloop.agent.events import EventEmitter, EventSink, EventType, StreamEvent
from agentloop.config.loader import ConfigError
from agentloop.config.schema import LoopConfig
from agentloop.llm.cancellation import is_set, linked_signal
from agentloop.llm.client import CompletionResponse, GenerateOptions, Message, StreamChunk, ToolCall
from agentloop.llm.errors import LLMError, LLMErrorCode, cancelled_error, is_cancellation
from agentloop.llm.manager import ModelManager
from agentloop.tools.base import ToolProvider

logger = logging.getLogger(__name__)


class LoopStatus(str, Enum):
    """Lifecycle status of a run."""

    RUNNING = "running"
    COMPLETED = "completed"
    MAX_ITERATIONS = "max_iterations"
    CANCELLED = "cancelled"
    ERROR = "error"


class LoopState:
    """Maintains conversation state for one run."""

    def __init__(self, system_prompt: Optional[str] = None, history: Optional[list[Message]] = None):
        """Initialize loop state.

        Args:
            system_prompt: System message placed first, if any
            history: Prior conversation; copied, never mutated. System
                messages in it are dropped.
        """
        self.iteration = 0
        self.messages: list[Message] = []
        self.tool_calls: list[ToolCallRecord] = []
        self.status = LoopStatus.RUNNING
        self.start_time = time.time()
        self.end_time: Optional[float] = None
        self.error: Optional[str] = None
        self.error_code: Optional[str] = None

        if system_prompt:
            self.messages.append(Message(role="system", content=system_prompt))

        for message in history or []:
            if message.role != "system":
                self.messages.append(message)

    def add_user_message(self, content: str) -> None:
        self.messages.append(Message(role="user", content=content))

    def add_assistant_message(self, content: str, tool_calls: Optional[list[ToolCall]] = None) -> None:
        """Add an assistant turn, with the tool calls it requested if any."""
        self.messages.append(
            Message(
                role="assistant",
                content=content,
                tool_calls=tool_calls or None,
            )
        )

    def add_tool_result(self, record: ToolCallRecord) -> None:
        """Record a dispatched call and append its ``tool`` message."""
        self.tool_calls.append(record)
        self.messages.append(
            Message(
                role="tool",
                content=record.result.to_message_content(),
                tool_call_id=record.id,
                name=record.tool_name,
            )
        )

    def finish(self, status: LoopStatus, error: Optional[str] = None, error_code: Optional[str] = None) -> None:
        """Move to a terminal status. Only the first transition counts."""
        if self.status is not LoopStatus.RUNNING:
            return
        self.status = status
        self.error = error
        self.error_code = error_code
        self.end_time = time.time()

    def last_assistant_content(self) -> str:
        for message in reversed(self.messages):
            if message.role == "assistant":
                return message.content or ""
        return ""


@dataclass
class LoopResult:
    """Outcome of a run."""

    status: LoopStatus
    content: str
    tool_calls: list[ToolCallRecord]
    iterations: int
    duration_ms: float
    error: Optional[str] = None


@dataclass
class LoopRunOptions:
    """Per-run options for :meth:`LoopController.run`."""

    system_prompt: Optional[str] = None
    history: Optional[list[Message]] = None
    abort_signal: Optional[asyncio.Event] = field(default=None, repr=False)
    timeout: Optional[float] = None  # Seconds per model call; overrides iteration_timeout
    max_iterations: Optional[int] = None
    on_event: Optional[EventSink] = field(default=None, repr=False)
    session_id: str = "default"
    message_id: Optional[str] = None


class LoopController:
    """Runs the agentic loop against a model manager and a tool provider.

    Example:
        controller = LoopController(manager, registry)
        result = await controller.run("What's 2 + 2?", context=None)
    """

    def __init__(
        self,
        manager: ModelManager,
        tools: ToolProvider,
        config: Union[LoopConfig, dict[str, Any], None] = None,
    ):
        """Initialize the controller.

        Args:
            manager: Model manager shared across runs
            tools: Provider of tool schemas and implementations
            config: Loop configuration (defaults apply when omitted)

        Raises:
            ConfigError: If the configuration is malformed
        """
        self.manager = manager
        self.tools = tools
        self._config = self._validate(config or LoopConfig())

    @staticmethod
    def _validate(config: Union[LoopConfig, dict[str, Any]]) -> LoopConfig:
        if isinstance(config, LoopConfig):
            return config
        try:
            return LoopConfig.model_validate(config)
        except ValidationError as e:
            raise ConfigError(f"Invalid loop configuration: {e}") from e

    @property
    def config(self) -> LoopConfig:
        return self._config.model_copy()

    def update_config(self, **changes: Any) -> None:
        """Replace configuration fields. Runs already in progress keep their settings."""
        self._config = self._validate({**self._config.model_dump(), **changes})

    async def run(
        self,
        user_message: str,
        context: Any = None,
        options: Optional[LoopRunOptions] = None,
    ) -> LoopResult:
        """Run the loop for one user message.

        Args:
            user_message: The user's input
            context: Opaque tool context handed to every tool call
            options: Per-run options

        Returns:
            LoopResult; max_iterations, cancellation and model failures are
            reported through its status rather than raised
        """
        options = options or LoopRunOptions()
        config = self._config
        max_iterations = options.max_iterations if options.max_iterations is not None else config.max_iterations
        timeout = options.timeout if options.timeout is not None else config.iteration_timeout
        signal = options.abort_signal
        emitter = EventEmitter(options.on_event, options.session_id)
        dispatcher = ToolDispatcher(
            self.tools, config.parallel_tool_calls, config.continue_on_error, config.tool_timeout
        )
        use_stream = emitter.enabled and config.stream_responses
        message_id = options.message_id or f"msg_{uuid.uuid4().hex[:12]}"

        state = LoopState(options.system_prompt or config.system_prompt, options.history)
        state.add_user_message(user_message)

        logger.info("Starting run %s (session %s, max %d iterations)", message_id, options.session_id, max_iterations)
        await emitter.emit(EventType.PROCESSING_STARTED, message_id=message_id)

        try:
            while state.status is LoopStatus.RUNNING:
                if state.iteration >= max_iterations:
                    state.finish(LoopStatus.MAX_ITERATIONS)
                    break
                if is_set(signal):
                    state.finish(LoopStatus.CANCELLED)
                    break

                await self._run_iteration(
                    state, context, dispatcher, emitter, signal, timeout, max_iterations, use_stream
                )
                state.iteration += 1
        except LLMError as e:
            if is_cancellation(e) or is_set(signal):
                state.finish(LoopStatus.CANCELLED)
            else:
                logger.error("Run %s failed: %s", message_id, e.message)
                state.finish(LoopStatus.ERROR, e.message, e.code.value)
        except Exception as e:
            if is_set(signal):
                state.finish(LoopStatus.CANCELLED)
            else:
                logger.exception("Run %s failed with unexpected error", message_id)
                state.finish(LoopStatus.ERROR, str(e) or type(e).__name__, LLMErrorCode.UNKNOWN_ERROR.value)

        result = self._build_result(state)
        await self._emit_outcome(emitter, state, result, message_id, signal, max_iterations)
        logger.debug(
            "Run %s ended with status %s after %d iterations", message_id, result.status.value, result.iterations
        )
        return result

    def stream(
        self,
        user_message: str,
        context: Any = None,
        options: Optional[LoopRunOptions] = None,
        max_queue_size: int = 100,
    ) -> "LoopStream":
        """Run the loop and iterate over its events.

        The run's event sink is replaced by a bounded queue; the LoopResult
        is available as ``stream.result`` once iteration finishes.

        Example:
            stream = controller.stream("hello")
            async for event in stream:
                print(event.type)
            print(stream.result.content)
        """
        return LoopStream(self, user_message, context, options or LoopRunOptions(), max_queue_size)

    async def _run_iteration(
        self,
        state: LoopState,
        context: Any,
        dispatcher: ToolDispatcher,
        emitter: EventEmitter,
        signal: Optional[asyncio.Event],
        timeout: Optional[float],
        max_iterations: int,
        use_stream: bool,
    ) -> None:
        started = time.perf_counter()
        current = state.iteration + 1
        await emitter.emit(EventType.ITERATION_STARTED, iteration=current, max_iterations=max_iterations)

        definitions = [schema.to_openai_format() for schema in self.tools.get_tool_definitions()]
        chunks: list[str] = []

        response = await self._call_model(state, definitions, signal, timeout, use_stream, chunks)

        # Already-running work may finish, but no new tool batch starts once cancelled
        if is_set(signal):
            raise cancelled_error("loop")

        if not chunks and response.content:
            chunks.append(response.content)

        tool_call_count = 0
        if response.tool_calls:
            tool_calls = [self._ensure_id(tc) for tc in response.tool_calls]
            state.add_assistant_message(response.content or "", tool_calls)

            records = await dispatcher.execute(tool_calls, context, emitter)
            for record in records:
                state.add_tool_result(record)
            tool_call_count = len(records)

            for chunk in chunks:
                await emitter.emit(EventType.CONTENT_CHUNK, content=chunk, is_complete=False)

            if not dispatcher.continue_on_error:
                failed = next((record for record in records if not record.success), None)
                if failed is not None:
                    message = failed.result.error.message if failed.result.error else failed.result.content
                    state.finish(
                        LoopStatus.ERROR,
                        f"Tool '{failed.tool_name}' failed: {message}",
                        failed.result.error.code if failed.result.error else None,
                    )
        else:
            state.add_assistant_message(response.content or "")
            for chunk in chunks:
                await emitter.emit(EventType.CONTENT_CHUNK, content=chunk, is_complete=False)
            await emitter.emit(EventType.CONTENT_CHUNK, content="", is_complete=True)
            state.finish(LoopStatus.COMPLETED)

        await emitter.emit(
            EventType.ITERATION_COMPLETED,
            iteration=current,
            duration_ms=(time.perf_counter() - started) * 1000,
            tool_call_count=tool_call_count,
        )

    async def _call_model(
        self,
        state: LoopState,
        definitions: list[dict[str, Any]],
        signal: Optional[asyncio.Event],
        timeout: Optional[float],
        use_stream: bool,
        chunks: list[str],
    ) -> CompletionResponse:
        """One model call under the combined caller/timeout signal.

        Streamed content is collected into ``chunks`` and flushed by the
        caller after the turn's tool events.
        """
        messages = list(state.messages)

        async with linked_signal(signal, timeout) as iteration_signal:
            generate_options = GenerateOptions(abort_signal=iteration_signal)

            if not use_stream:
                return await self.manager.generate_with_tools("tool_calling", messages, definitions, generate_options)

            def on_chunk(chunk: StreamChunk) -> None:
                if chunk.type == "content" and chunk.content:
                    chunks.append(chunk.content)

            return await self.manager.generate_with_tools_stream(
                "tool_calling", messages, definitions, on_chunk, generate_options
            )

    @staticmethod
    def _ensure_id(tool_call: ToolCall) -> ToolCall:
        if tool_call.id:
            return tool_call
        return ToolCall(id=f"call_{uuid.uuid4().hex[:24]}", name=tool_call.name, arguments=tool_call.arguments)

    @staticmethod
    def _build_result(state: LoopState) -> LoopResult:
        end_time = state.end_time or time.time()
        return LoopResult(
            status=state.status,
            content=state.last_assistant_content() if state.status is LoopStatus.COMPLETED else "",
            tool_calls=list(state.tool_calls),
            iterations=state.iteration,
            duration_ms=(end_time - state.start_time) * 1000,
            error=state.error,
        )

    @staticmethod
    async def _emit_outcome(
        emitter: EventEmitter,
        state: LoopState,
        result: LoopResult,
        message_id: str,
        signal: Optional[asyncio.Event],
        max_iterations: int,
    ) -> None:
        if result.status is LoopStatus.COMPLETED:
            await emitter.emit(EventType.DECISION, reason="Task completed successfully", completed=True)
            await emitter.emit(
                EventType.COMPLETED,
                message_id=message_id,
                status=result.status.value,
                content=result.content,
                duration_ms=result.duration_ms,
                iterations=result.iterations,
                tool_calls=len(result.tool_calls),
            )
        elif result.status is LoopStatus.MAX_ITERATIONS:
            await emitter.emit(
                EventType.DECISION,
                reason=f"Reached maximum iteration limit ({max_iterations})",
                completed=False,
            )
            await emitter.emit(
                EventType.COMPLETED,
                message_id=message_id,
                status=result.status.value,
                content=result.content,
                partial_content=state.last_assistant_content(),
                duration_ms=result.duration_ms,
                iterations=result.iterations,
                tool_calls=len(result.tool_calls),
            )
        elif result.status is LoopStatus.CANCELLED:
            reason = "user_cancelled" if is_set(signal) else "timeout"
            await emitter.emit(EventType.DECISION, reason="Operation was cancelled", completed=False)
            await emitter.emit(
                EventType.CANCELLED,
                message_id=message_id,
                reason=reason,
                partial_content=state.last_assistant_content(),
            )
        else:
            await emitter.emit(EventType.DECISION, reason=f"Run failed: {result.error}", completed=False)
            await emitter.emit(
                EventType.ERROR,
                message_id=message_id,
                code=state.error_code or LLMErrorCode.UNKNOWN_ERROR.value,
                message=result.error,
                recoverable=False,
            )


class LoopStream:
    """Async iterator over the events of one run.

    Events pass through a bounded queue, so a slow consumer applies
    backpressure to the run. Iteration ends after the terminal event.
    A consumer that stops early should call :meth:`aclose` (or use the
    stream as an async context manager) to cancel the run right away.

    Example:
        async with controller.stream("hello") as stream:
            async for event in stream:
                if event.type is EventType.TOOL_ERROR:
                    break
    """

    def __init__(
        self,
        controller: LoopController,
        user_message: str,
        context: Any,
        options: LoopRunOptions,
        max_queue_size: int = 100,
    ):
        self._controller = controller
        self._user_message = user_message
        self._context = context
        self._options = options
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=max_queue_size)
        self._task: Optional[asyncio.Future[LoopResult]] = None
        self._result: Optional[LoopResult] = None

    @property
    def result(self) -> LoopResult:
        """The run's result (available once the stream is exhausted)."""
        if self._result is None:
            raise RuntimeError("Run has not finished; iterate the stream first")
        return self._result

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._iterate()

    async def __aenter__(self) -> "LoopStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel the run if it is still in progress and wait for it to stop."""
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        options = dataclasses.replace(self._options, on_event=self._queue.put)
        self._task = task = asyncio.ensure_future(self._controller.run(self._user_message, self._context, options))

        try:
            while True:
                getter = asyncio.ensure_future(self._queue.get())
                done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    event = getter.result()
                    yield event
                    if event.is_terminal:
                        break
                    continue

                getter.cancel()
                while not self._queue.empty():
                    yield self._queue.get_nowait()
                break

            self._result = await task
        finally:
            await self.aclose()
