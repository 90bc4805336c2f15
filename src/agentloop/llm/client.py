"""LLM adapter protocol and data types."""

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, Union

FinishReason = Literal["stop", "tool_calls", "length", "content_filter"]


@dataclass
class ToolCall:
    """A tool call requested by the LLM.

    ``arguments`` holds the raw JSON text produced by the model. It is
    parsed only when the call is dispatched, so a malformed payload turns
    into a failed tool result rather than a failed model call.
    """

    id: str
    name: str
    arguments: str = "{}"

    def parse_arguments(self) -> dict[str, Any]:
        """Parse the raw argument text.

        Returns:
            Argument mapping (empty text parses to an empty mapping)

        Raises:
            ValueError: If the text is not a JSON object
        """
        if not self.arguments or not self.arguments.strip():
            return {}
        parsed = json.loads(self.arguments)
        if not isinstance(parsed, dict):
            raise ValueError(f"Tool arguments must be a JSON object, got {type(parsed).__name__}")
        return parsed


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant", "tool"
    content: str
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None  # For tool response messages
    name: str | None = None  # Tool name for tool response messages


@dataclass
class Usage:
    """Token accounting reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class CompletionResponse:
    """Response from LLM completion."""

    content: str
    tool_calls: list[ToolCall] | None = None
    finish_reason: FinishReason = "stop"
    usage: Usage | None = None


@dataclass
class ToolCallDelta:
    """Incremental tool call data from a streaming response."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass
class StreamChunk:
    """One increment of a streaming response."""

    type: Literal["content", "tool_call", "done"]
    content: str | None = None
    tool_call: ToolCallDelta | None = None
    response: CompletionResponse | None = None


StreamCallback = Callable[[StreamChunk], None]


@dataclass
class EmbeddingResult:
    """Embedding vector for a piece of text."""

    embedding: list[float]
    token_count: int | None = None


@dataclass
class GenerateOptions:
    """Per-call generation options."""

    temperature: float | None = None
    max_tokens: int | None = None
    stop: list[str] | None = None
    system_prompt: str | None = None  # Only used when the prompt is a plain string
    abort_signal: asyncio.Event | None = field(default=None, repr=False)


Prompt = Union[str, list[Message]]


def prompt_to_messages(prompt: Prompt, system_prompt: str | None = None) -> list[Message]:
    """Normalise a prompt into a message list.

    Args:
        prompt: Plain string or an existing message list
        system_prompt: System message to prepend to a plain string prompt

    Returns:
        Message list (an existing list is returned unchanged)
    """
    if not isinstance(prompt, str):
        return prompt

    messages: list[Message] = []
    if system_prompt:
        messages.append(Message(role="system", content=system_prompt))
    messages.append(Message(role="user", content=prompt))
    return messages


def normalize_finish_reason(reason: str | None) -> FinishReason:
    """Map vendor finish/stop reasons onto the shared vocabulary."""
    if reason in ("tool_calls", "tool_use", "function_call"):
        return "tool_calls"
    if reason in ("length", "max_tokens"):
        return "length"
    if reason == "content_filter":
        return "content_filter"
    return "stop"


class LLMClient(Protocol):
    """Protocol for LLM adapter implementations.

    One implementation exists per vendor. Every call accepts
    ``options.abort_signal`` and raises
    :class:`~agentloop.llm.errors.LLMError` on failure.
    """

    provider: str
    model: str

    async def generate(self, prompt: Prompt, options: GenerateOptions | None = None) -> str:
        """Generate plain text.

        Args:
            prompt: Prompt string or conversation history
            options: Generation options

        Returns:
            Generated text
        """
        ...

    async def generate_with_tools(
        self,
        prompt: Prompt,
        tools: list[dict[str, Any]],
        options: GenerateOptions | None = None,
    ) -> CompletionResponse:
        """Generate a completion that may request tool calls.

        Args:
            prompt: Prompt string or conversation history
            tools: Available tools in OpenAI function format
            options: Generation options

        Returns:
            CompletionResponse with content and optional tool calls
        """
        ...

    async def generate_with_tools_stream(
        self,
        prompt: Prompt,
        tools: list[dict[str, Any]],
        on_chunk: StreamCallback,
        options: GenerateOptions | None = None,
    ) -> CompletionResponse:
        """Stream a completion that may request tool calls.

        Args:
            prompt: Prompt string or conversation history
            tools: Available tools in OpenAI function format
            on_chunk: Called with every content / tool_call chunk and a final done chunk
            options: Generation options

        Returns:
            The accumulated CompletionResponse
        """
        ...

    async def embed(self, text: str) -> EmbeddingResult:
        """Embed ``text`` (adapters without embeddings raise INVALID_REQUEST)."""
        ...

    def supports_streaming(self) -> bool: ...

    def supports_tool_calling(self) -> bool: ...

    def supports_embeddings(self) -> bool: ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...
