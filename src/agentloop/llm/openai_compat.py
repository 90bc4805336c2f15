"""Client for OpenAI and OpenAI-compatible inference APIs."""

import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from agentloop.llm.cancellation import run_cancellable
from agentloop.llm.client import (
    CompletionResponse,
    EmbeddingResult,
    GenerateOptions,
    Message,
    Prompt,
    StreamCallback,
    StreamChunk,
    ToolCall,
    ToolCallDelta,
    Usage,
    normalize_finish_reason,
    prompt_to_messages,
)
from agentloop.llm.errors import LLMError, LLMErrorCode

logger = logging.getLogger(__name__)


class OpenAICompatibleClient:
    """LLM adapter for any OpenAI-compatible ``/v1/chat/completions`` API.

    OpenAI itself, Qwen (DashScope compatible mode), SiliconFlow and
    self-hosted servers all speak this protocol, so this class carries the
    shared request/response logic and vendor subclasses only supply
    defaults. Retries are disabled in the SDK; the model manager owns
    retry policy.
    """

    provider = "custom"
    default_base_url: str | None = None
    default_embedding_model = "text-embedding-ada-002"

    def __init__(
        self,
        model: str,
        api_key: str = "none",
        base_url: str | None = None,
        timeout: float = 120,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        embedding_model: str | None = None,
    ) -> None:
        """Initialise the client.

        Args:
            model: Model name served by the backend.
            api_key: API key (some self-hosted backends ignore it but the SDK requires one).
            base_url: OpenAI-compatible endpoint (must include ``/v1``).
            timeout: Request timeout in seconds.
            temperature: Default sampling temperature.
            max_tokens: Default completion token limit.
            embedding_model: Model used by :meth:`embed`.
        """
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.embedding_model = embedding_model or self.default_embedding_model
        self.base_url = base_url or self.default_base_url
        self.client = AsyncOpenAI(
            base_url=self.base_url,
            api_key=api_key,
            timeout=timeout,
            max_retries=0,
        )

    def supports_streaming(self) -> bool:
        return True

    def supports_tool_calling(self) -> bool:
        return True

    def supports_embeddings(self) -> bool:
        return True

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert internal Message format to OpenAI format."""
        openai_messages: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == "tool":
                openai_messages.append(
                    {
                        "role": "tool",
                        "content": msg.content,
                        "tool_call_id": msg.tool_call_id or "",
                    }
                )
                continue

            message_dict: dict[str, Any] = {
                "role": msg.role,
                "content": msg.content,
            }

            if msg.role == "assistant" and msg.tool_calls:
                # OpenAI expects null content when the turn only carries tool calls
                message_dict["content"] = msg.content or None
                message_dict["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": tc.arguments or "{}",
                        },
                    }
                    for tc in msg.tool_calls
                ]

            openai_messages.append(message_dict)

        return openai_messages

    def _parse_tool_calls(self, tool_calls: Any) -> list[ToolCall]:
        """Parse tool calls from an OpenAI-compatible response."""
        if not tool_calls:
            return []

        return [
            ToolCall(
                id=tc.id or "",
                name=tc.function.name,
                arguments=tc.function.arguments or "{}",
            )
            for tc in tool_calls
        ]

    def _build_params(
        self,
        prompt: Prompt,
        tools: list[dict[str, Any]] | None,
        options: GenerateOptions,
    ) -> dict[str, Any]:
        messages = prompt_to_messages(prompt, options.system_prompt)

        params: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(messages),
            "temperature": options.temperature if options.temperature is not None else self.temperature,
            "max_tokens": options.max_tokens or self.max_tokens,
        }

        if tools:
            params["tools"] = tools
            params["tool_choice"] = "auto"

        if options.stop:
            params["stop"] = options.stop

        return params

    async def generate(self, prompt: Prompt, options: GenerateOptions | None = None) -> str:
        """Generate plain text."""
        response = await self.generate_with_tools(prompt, [], options)
        return response.content

    async def generate_with_tools(
        self,
        prompt: Prompt,
        tools: list[dict[str, Any]],
        options: GenerateOptions | None = None,
    ) -> CompletionResponse:
        """Generate a completion.

        Args:
            prompt: Prompt string or conversation history.
            tools: Available tools in OpenAI function format.
            options: Generation options.

        Returns:
            CompletionResponse with content and optional tool calls.
        """
        options = options or GenerateOptions()
        params = self._build_params(prompt, tools, options)

        try:
            response = await run_cancellable(
                self.client.chat.completions.create(**params),
                options.abort_signal,
                self.provider,
            )
        except Exception as e:
            raise self._handle_error(e) from e

        choice = response.choices[0]
        message = choice.message
        tool_calls = self._parse_tool_calls(message.tool_calls)

        usage = None
        if response.usage is not None:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )

        return CompletionResponse(
            content=message.content or "",
            tool_calls=tool_calls if tool_calls else None,
            finish_reason=normalize_finish_reason(choice.finish_reason),
            usage=usage,
        )

    async def generate_with_tools_stream(
        self,
        prompt: Prompt,
        tools: list[dict[str, Any]],
        on_chunk: StreamCallback,
        options: GenerateOptions | None = None,
    ) -> CompletionResponse:
        """Stream a completion, forwarding chunks to ``on_chunk``.

        Tool call fragments are accumulated by their ``index``; the final
        response is also delivered as a ``done`` chunk.
        """
        options = options or GenerateOptions()
        params = self._build_params(prompt, tools, options)
        params["stream"] = True

        try:
            response = await run_cancellable(
                self._consume_stream(params, on_chunk),
                options.abort_signal,
                self.provider,
            )
        except Exception as e:
            raise self._handle_error(e) from e

        on_chunk(StreamChunk(type="done", response=response))
        return response

    async def _consume_stream(self, params: dict[str, Any], on_chunk: StreamCallback) -> CompletionResponse:
        content_parts: list[str] = []
        partial_calls: dict[int, dict[str, str]] = {}
        finish_reason: str | None = None

        stream = await self.client.chat.completions.create(**params)

        async for chunk in stream:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta

            if delta.content:
                content_parts.append(delta.content)
                on_chunk(StreamChunk(type="content", content=delta.content))

            for tc in delta.tool_calls or []:
                entry = partial_calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                name = tc.function.name if tc.function else None
                arguments = tc.function.arguments if tc.function else None
                if tc.id:
                    entry["id"] = tc.id
                if name:
                    entry["name"] = name
                if arguments:
                    entry["arguments"] += arguments
                on_chunk(
                    StreamChunk(
                        type="tool_call",
                        tool_call=ToolCallDelta(index=tc.index, id=tc.id, name=name, arguments=arguments),
                    )
                )

            if choice.finish_reason:
                finish_reason = choice.finish_reason

        tool_calls = [
            ToolCall(id=entry["id"], name=entry["name"], arguments=entry["arguments"] or "{}")
            for _, entry in sorted(partial_calls.items())
        ]

        return CompletionResponse(
            content="".join(content_parts),
            tool_calls=tool_calls or None,
            finish_reason=normalize_finish_reason(finish_reason),
        )

    async def embed(self, text: str) -> EmbeddingResult:
        """Embed ``text`` with the configured embedding model."""
        try:
            response = await self.client.embeddings.create(model=self.embedding_model, input=text)
        except Exception as e:
            raise self._handle_error(e) from e

        if not response.data:
            raise LLMError("No embedding data returned", LLMErrorCode.INVALID_REQUEST, self.provider)

        return EmbeddingResult(
            embedding=list(response.data[0].embedding),
            token_count=response.usage.total_tokens if response.usage else None,
        )

    def _handle_error(self, error: Exception) -> LLMError:
        """Classify an SDK exception."""
        if isinstance(error, LLMError):
            return error

        if isinstance(error, openai.APITimeoutError):
            return LLMError(str(error), LLMErrorCode.TIMEOUT, self.provider, error)

        if isinstance(error, openai.APIConnectionError):
            return LLMError(str(error), LLMErrorCode.NETWORK_ERROR, self.provider, error)

        if isinstance(error, openai.APIStatusError):
            code = self._map_error_code(error.status_code, error.code)
            return LLMError(error.message, code, self.provider, error)

        return LLMError(str(error) or type(error).__name__, LLMErrorCode.UNKNOWN_ERROR, self.provider, error)

    @staticmethod
    def _map_error_code(status: int | None, code: str | None) -> LLMErrorCode:
        if code == "context_length_exceeded":
            return LLMErrorCode.CONTEXT_LENGTH_EXCEEDED
        if code == "content_filter":
            return LLMErrorCode.CONTENT_FILTER
        if status == 401:
            return LLMErrorCode.AUTHENTICATION_ERROR
        if status == 429:
            return LLMErrorCode.RATE_LIMIT_ERROR
        if status == 400:
            return LLMErrorCode.INVALID_REQUEST
        if status == 404:
            return LLMErrorCode.MODEL_NOT_FOUND
        if status == 408:
            return LLMErrorCode.TIMEOUT
        return LLMErrorCode.UNKNOWN_ERROR

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.close()


class OpenAIClient(OpenAICompatibleClient):
    """LLM adapter for the OpenAI API (SDK default endpoint)."""

    provider = "openai"
