"""Model manager: task routing, retry with backoff, and fallback.

One :class:`ModelManager` is built per configuration and shared by every
loop run. It owns an :class:`AdapterRegistry` so that each distinct
``(provider, model, base_url)`` is served by exactly one adapter instance.
"""

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable, Iterator
from typing import Any, Optional, TypeVar, Union

from pydantic import ValidationError

from agentloop.config.loader import ConfigError
from agentloop.config.schema import LLMConfig, LLMTask, ProviderConfig
from agentloop.llm.cancellation import is_set, run_cancellable
from agentloop.llm.client import (
    CompletionResponse,
    EmbeddingResult,
    GenerateOptions,
    LLMClient,
    Prompt,
    StreamCallback,
    StreamChunk,
)
from agentloop.llm.errors import LLMError, LLMErrorCode, cancelled_error, classify_error
from agentloop.llm.factory import create_llm_client

logger = logging.getLogger(__name__)

T = TypeVar("T")

AdapterKey = tuple[str, str, str]
ClientFactory = Callable[[ProviderConfig], LLMClient]


class AdapterRegistry:
    """Cache of adapters keyed by ``(provider, model, base_url)``.

    Construction happens under a lock, so concurrent first access to the
    same key builds the adapter at most once.
    """

    def __init__(self, factory: ClientFactory = create_llm_client) -> None:
        self._factory = factory
        self._adapters: dict[AdapterKey, LLMClient] = {}
        self._lock = threading.Lock()

    def get_or_create(self, config: ProviderConfig) -> LLMClient:
        """Return the cached adapter for ``config``, building it on first use."""
        key = config.adapter_key
        adapter = self._adapters.get(key)
        if adapter is not None:
            return adapter

        with self._lock:
            adapter = self._adapters.get(key)
            if adapter is None:
                logger.debug("Creating adapter for %s/%s (%s)", *key)
                adapter = self._factory(config)
                self._adapters[key] = adapter
            return adapter

    def snapshot(self) -> dict[AdapterKey, LLMClient]:
        """Copy of the current cache contents."""
        with self._lock:
            return dict(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)

    def __contains__(self, key: AdapterKey) -> bool:
        return key in self._adapters

    def __iter__(self) -> Iterator[AdapterKey]:
        return iter(self.snapshot())

    async def aclose_all(self) -> None:
        """Close every cached adapter and empty the cache."""
        with self._lock:
            adapters = list(self._adapters.values())
            self._adapters.clear()
        for adapter in adapters:
            await adapter.aclose()


class ModelManager:
    """Routes LLM calls to adapters with retry and fallback.

    Example:
        manager = ModelManager(LLMConfig(default=ProviderConfig(provider="openai", model="gpt-4o")))
        response = await manager.generate_with_tools("tool_calling", messages, tools)
    """

    def __init__(
        self,
        config: Union[LLMConfig, dict[str, Any]],
        client_factory: ClientFactory = create_llm_client,
    ) -> None:
        """Initialize the manager and build the configured adapters.

        Args:
            config: Manager configuration (a mapping is validated into LLMConfig)
            client_factory: Builds an adapter from a provider configuration

        Raises:
            ConfigError: If the configuration is malformed
        """
        if not isinstance(config, LLMConfig):
            try:
                config = LLMConfig.model_validate(config)
            except ValidationError as e:
                raise ConfigError(f"Invalid model manager configuration: {e}") from e

        self._config = config
        self._registry = AdapterRegistry(client_factory)

        for provider_config in config.configured_providers():
            self._registry.get_or_create(provider_config)

    @property
    def config(self) -> LLMConfig:
        return self._config

    @property
    def adapters(self) -> dict[AdapterKey, LLMClient]:
        """Snapshot of the adapter cache."""
        return self._registry.snapshot()

    def get_adapter_for_task(self, task: LLMTask) -> LLMClient:
        """Resolve the adapter that handles ``task``.

        In ``multi`` mode the task assignment wins; otherwise, and for
        unassigned tasks, the default provider is used.
        """
        return self._registry.get_or_create(self._config.provider_for_task(task))

    def _fallback_adapter(self) -> Optional[LLMClient]:
        if self._config.fallback is None:
            return None
        return self._registry.get_or_create(self._config.fallback)

    async def generate(
        self,
        task: LLMTask,
        prompt: Prompt,
        options: Optional[GenerateOptions] = None,
    ) -> str:
        """Generate plain text for ``task`` with retry and fallback."""
        return await self._execute_with_retry(
            task,
            lambda adapter: adapter.generate(prompt, options),
            options,
        )

    async def generate_with_tools(
        self,
        task: LLMTask,
        prompt: Prompt,
        tools: list[dict[str, Any]],
        options: Optional[GenerateOptions] = None,
    ) -> CompletionResponse:
        """Generate a tool-augmented completion for ``task``.

        Args:
            task: Logical task used for routing
            prompt: Prompt string or conversation history
            tools: Tool definitions in OpenAI function format
            options: Generation options, including the abort signal

        Returns:
            CompletionResponse from the primary or fallback adapter

        Raises:
            LLMError: CANCELLED if the signal fired, otherwise the primary's last error
        """
        return await self._execute_with_retry(
            task,
            lambda adapter: adapter.generate_with_tools(prompt, tools, options),
            options,
        )

    async def generate_with_tools_stream(
        self,
        task: LLMTask,
        prompt: Prompt,
        tools: list[dict[str, Any]],
        on_chunk: StreamCallback,
        options: Optional[GenerateOptions] = None,
    ) -> CompletionResponse:
        """Streaming variant of :meth:`generate_with_tools`.

        A partially delivered stream cannot be replayed, so there is no
        retry or fallback here. Adapters without streaming support are
        called in batch mode and their text is delivered as a single
        content chunk followed by a ``done`` chunk.
        """
        adapter = self.get_adapter_for_task(task)
        signal = options.abort_signal if options else None
        if is_set(signal):
            raise cancelled_error(adapter.provider)

        try:
            if not adapter.supports_streaming():
                response = await adapter.generate_with_tools(prompt, tools, options)
                if response.content:
                    on_chunk(StreamChunk(type="content", content=response.content))
                on_chunk(StreamChunk(type="done", response=response))
                return response

            return await adapter.generate_with_tools_stream(prompt, tools, on_chunk, options)
        except Exception as e:
            error = classify_error(e, adapter.provider)
            if is_set(signal) and not error.cancelled:
                raise cancelled_error(adapter.provider) from e
            if error is e:
                raise
            raise error from e

    async def embed(self, text: str) -> EmbeddingResult:
        """Embed ``text`` using the first adapter that supports embeddings.

        The knowledge retrieval adapter is preferred, then the fallback,
        then the default.

        Raises:
            LLMError: INVALID_REQUEST if no configured adapter can embed
        """
        candidates = [self.get_adapter_for_task("knowledge_retrieval")]
        fallback = self._fallback_adapter()
        if fallback is not None:
            candidates.append(fallback)
        candidates.append(self._registry.get_or_create(self._config.default))

        for adapter in candidates:
            if adapter.supports_embeddings():
                return await adapter.embed(text)

        raise LLMError(
            "No configured adapter supports embeddings",
            LLMErrorCode.INVALID_REQUEST,
            candidates[0].provider,
        )

    def supports_streaming(self, task: LLMTask) -> bool:
        return self.get_adapter_for_task(task).supports_streaming()

    def supports_tool_calling(self, task: LLMTask) -> bool:
        return self.get_adapter_for_task(task).supports_tool_calling()

    def supports_embeddings(self) -> bool:
        """Whether :meth:`embed` can succeed with the current configuration."""
        candidates = [
            self.get_adapter_for_task("knowledge_retrieval"),
            self._registry.get_or_create(self._config.default),
        ]
        fallback = self._fallback_adapter()
        if fallback is not None:
            candidates.append(fallback)
        return any(adapter.supports_embeddings() for adapter in candidates)

    async def _execute_with_retry(
        self,
        task: LLMTask,
        operation: Callable[[LLMClient], Awaitable[T]],
        options: Optional[GenerateOptions],
    ) -> T:
        signal = options.abort_signal if options else None
        adapter = self.get_adapter_for_task(task)
        if is_set(signal):
            raise cancelled_error(adapter.provider)

        retry = self._config.retry
        delay_ms = retry.initial_delay_ms
        last_error: Optional[LLMError] = None

        for attempt in range(retry.max_retries + 1):
            if is_set(signal):
                raise cancelled_error(adapter.provider)

            try:
                return await operation(adapter)
            except Exception as e:
                error = classify_error(e, adapter.provider)
                if error.cancelled:
                    if error is e:
                        raise
                    raise error from e
                last_error = error

                if not error.retryable or attempt >= retry.max_retries:
                    break

                logger.warning(
                    "%s call failed with %s (attempt %d/%d), retrying in %d ms",
                    adapter.provider,
                    error.code.value,
                    attempt + 1,
                    retry.max_retries + 1,
                    delay_ms,
                )
                await run_cancellable(asyncio.sleep(delay_ms / 1000), signal, adapter.provider)
                delay_ms = min(delay_ms * 2, retry.max_delay_ms)

        fallback = self._fallback_adapter()
        if fallback is not None:
            if is_set(signal):
                raise cancelled_error(adapter.provider)

            logger.warning(
                "%s failed with %s, trying fallback %s/%s",
                adapter.provider,
                last_error.code.value if last_error else "UNKNOWN_ERROR",
                fallback.provider,
                fallback.model,
            )
            try:
                return await operation(fallback)
            except Exception as e:
                fallback_error = classify_error(e, fallback.provider)
                if fallback_error.cancelled:
                    if fallback_error is e:
                        raise
                    raise fallback_error from e
                logger.warning("Fallback %s also failed: %s", fallback.provider, fallback_error.message)

        if last_error is None:
            raise LLMError("Unknown error during LLM operation", LLMErrorCode.UNKNOWN_ERROR, adapter.provider)
        raise last_error

    async def aclose(self) -> None:
        """Close all adapters owned by this manager."""
        await self._registry.aclose_all()


def create_simple_manager(
    provider: str,
    api_key: str,
    model: str,
    client_factory: ClientFactory = create_llm_client,
    **overrides: Any,
) -> ModelManager:
    """Build a single-model manager in one call.

    Args:
        provider: Provider name ("openai", "claude", "qwen", "siliconflow", "custom")
        api_key: API key for the provider
        model: Model identifier
        client_factory: Adapter factory (mainly for tests)
        **overrides: Extra ProviderConfig fields such as base_url or temperature

    Raises:
        ConfigError: If the resulting configuration is malformed
    """
    try:
        default = ProviderConfig(provider=provider, api_key=api_key, model=model, **overrides)
    except ValidationError as e:
        raise ConfigError(f"Invalid provider configuration: {e}") from e
    return ModelManager(LLMConfig(mode="single", default=default), client_factory=client_factory)
