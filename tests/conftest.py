"""Pytest configuration and shared fixtures."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Union

import pytest

from agentloop.config.schema import LLMConfig, ProviderConfig, RetryConfig
from agentloop.llm.client import (
    CompletionResponse,
    EmbeddingResult,
    GenerateOptions,
    StreamChunk,
    ToolCall,
)
from agentloop.llm.errors import LLMError, LLMErrorCode
from agentloop.llm.manager import ModelManager
from agentloop.tools.registry import ToolRegistry

# A scripted step is a response, an exception to raise, or a coroutine
# function receiving the call options (used to block until cancelled).
Step = Union[CompletionResponse, BaseException, Callable[[GenerateOptions], Awaitable[CompletionResponse]]]


class MockLLM:
    """Scripted LLM adapter for testing.

    Steps are consumed in order; the last one repeats once the script runs out.
    """

    def __init__(
        self,
        steps: list[Step] | None = None,
        provider: str = "mock",
        model: str = "mock-model",
        streaming: bool = True,
        embeddings: bool = False,
    ):
        self.steps = list(steps or [CompletionResponse(content="ok")])
        self.provider = provider
        self.model = model
        self.streaming = streaming
        self.embeddings = embeddings
        self.calls: list[dict[str, Any]] = []
        self.stream_calls = 0
        self.closed = False

    def _next_step(self) -> Step:
        if len(self.steps) > 1:
            return self.steps.pop(0)
        return self.steps[0]

    async def generate(self, prompt, options=None) -> str:
        response = await self.generate_with_tools(prompt, [], options)
        return response.content

    async def generate_with_tools(self, prompt, tools, options=None) -> CompletionResponse:
        self.calls.append(
            {
                "prompt": list(prompt) if isinstance(prompt, list) else prompt,
                "tools": tools,
                "options": options,
            }
        )
        step = self._next_step()
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return await step(options or GenerateOptions())
        return step

    async def generate_with_tools_stream(self, prompt, tools, on_chunk, options=None) -> CompletionResponse:
        self.stream_calls += 1
        response = await self.generate_with_tools(prompt, tools, options)
        for word in response.content.split(" ") if response.content else []:
            on_chunk(StreamChunk(type="content", content=word))
        on_chunk(StreamChunk(type="done", response=response))
        return response

    async def embed(self, text: str) -> EmbeddingResult:
        if not self.embeddings:
            raise LLMError("no embeddings", LLMErrorCode.INVALID_REQUEST, self.provider)
        return EmbeddingResult(embedding=[0.1, 0.2, 0.3], token_count=len(text.split()))

    def supports_streaming(self) -> bool:
        return self.streaming

    def supports_tool_calling(self) -> bool:
        return True

    def supports_embeddings(self) -> bool:
        return self.embeddings

    async def aclose(self) -> None:
        self.closed = True


class MockFactory:
    """Adapter factory returning pre-built mocks keyed by model name."""

    def __init__(self, adapters: dict[str, MockLLM]):
        self.adapters = adapters
        self.created: list[str] = []

    def __call__(self, config: ProviderConfig) -> MockLLM:
        self.created.append(config.model)
        return self.adapters.get(config.model) or MockLLM(provider=config.provider, model=config.model)


def text(content: str) -> CompletionResponse:
    return CompletionResponse(content=content, finish_reason="stop")


def calls(*tool_calls: ToolCall, content: str = "") -> CompletionResponse:
    return CompletionResponse(content=content, tool_calls=list(tool_calls), finish_reason="tool_calls")


def rate_limited() -> LLMError:
    return LLMError("slow down", LLMErrorCode.RATE_LIMIT_ERROR, "mock")


async def wait_for_cancel(options: GenerateOptions) -> CompletionResponse:
    """Block until the call's abort signal fires, like a hung network request."""
    await options.abort_signal.wait()
    raise LLMError("Operation cancelled", LLMErrorCode.CANCELLED, "mock")


def fast_retry(max_retries: int = 3) -> RetryConfig:
    return RetryConfig(max_retries=max_retries, initial_delay_ms=0, max_delay_ms=0)


def make_manager(
    primary: MockLLM,
    fallback: MockLLM | None = None,
    retry: RetryConfig | None = None,
) -> ModelManager:
    adapters = {"primary": primary}
    config = LLMConfig(
        default=ProviderConfig(provider="openai", model="primary"),
        retry=retry or fast_retry(),
    )
    if fallback is not None:
        adapters["fallback"] = fallback
        config.fallback = ProviderConfig(provider="claude", model="fallback")
    return ModelManager(config, client_factory=MockFactory(adapters))


@pytest.fixture
def registry() -> ToolRegistry:
    """Registry with a handful of deterministic tools."""
    tools = ToolRegistry()

    @tools.tool(description="Add two numbers")
    async def add(a: int, b: int) -> str:
        """Add numbers.

        Args:
            a: First operand
            b: Second operand
        """
        return str(a + b)

    @tools.tool(description="Echo text back")
    async def echo(text: str) -> str:
        return text

    @tools.tool(description="Always fails")
    async def explode() -> str:
        raise RuntimeError("boom")

    @tools.tool(description="Sleep briefly, then answer")
    async def slow(delay: float = 0.05) -> str:
        await asyncio.sleep(delay)
        return "done"

    return tools
