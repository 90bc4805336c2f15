"""Anthropic Claude LLM client using httpx.

Implements the LLMClient protocol for the Anthropic Messages API.
Uses httpx directly to avoid adding the anthropic SDK as a dependency.
"""

import json
import logging
from typing import Any

import httpx

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

ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_API_VERSION = "2023-06-01"


class AnthropicClient:
    """LLM adapter for the Anthropic Messages API."""

    provider = "claude"

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        max_tokens: int = 4096,
        timeout: float = 120,
        temperature: float = 0.7,
    ):
        """Initialize Anthropic client.

        Args:
            api_key: Anthropic API key
            model: Model name (e.g., "claude-sonnet-4-20250514")
            base_url: API root override (proxies, gateways)
            max_tokens: Default max tokens for responses
            timeout: Request timeout in seconds
            temperature: Default sampling temperature
        """
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.base_url = base_url or ANTHROPIC_BASE_URL

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_API_VERSION,
                "content-type": "application/json",
            },
            timeout=httpx.Timeout(timeout),
        )

    def supports_streaming(self) -> bool:
        return True

    def supports_tool_calling(self) -> bool:
        return True

    def supports_embeddings(self) -> bool:
        return False

    def _convert_messages(self, messages: list[Message]) -> tuple[str | None, list[dict[str, Any]]]:
        """Convert internal Message format to Anthropic format.

        Anthropic requires the system message to be separate from the
        messages array, and consecutive tool results to share one user turn.

        Args:
            messages: List of Message objects

        Returns:
            Tuple of (system_prompt, anthropic_messages)
        """
        system_prompt = None
        anthropic_messages: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                system_prompt = msg.content
                continue

            if msg.role == "assistant" and msg.tool_calls:
                # Anthropic uses content blocks for tool use
                content_blocks: list[dict[str, Any]] = []
                if msg.content:
                    content_blocks.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    content_blocks.append(
                        {
                            "type": "tool_use",
                            "id": tc.id,
                            "name": tc.name,
                            "input": self._tool_input(tc),
                        }
                    )
                anthropic_messages.append({"role": "assistant", "content": content_blocks})

            elif msg.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.content,
                }
                previous = anthropic_messages[-1] if anthropic_messages else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and all(b.get("type") == "tool_result" for b in previous["content"])
                ):
                    previous["content"].append(block)
                else:
                    anthropic_messages.append({"role": "user", "content": [block]})

            else:
                anthropic_messages.append({"role": msg.role, "content": msg.content})

        return system_prompt, anthropic_messages

    @staticmethod
    def _tool_input(tool_call: ToolCall) -> dict[str, Any]:
        # Malformed arguments were already reported back as a failed tool result
        try:
            return tool_call.parse_arguments()
        except ValueError:
            return {}

    def _convert_tools(self, tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert OpenAI function format to Anthropic tool format.

        Args:
            tools: Tools in OpenAI format

        Returns:
            Tools in Anthropic format
        """
        anthropic_tools = []
        for tool in tools:
            func = tool.get("function", tool)
            anthropic_tools.append(
                {
                    "name": func["name"],
                    "description": func.get("description", ""),
                    "input_schema": func.get("parameters", {"type": "object", "properties": {}}),
                }
            )
        return anthropic_tools

    def _parse_content(self, content_blocks: list[dict[str, Any]]) -> tuple[str, list[ToolCall]]:
        """Parse Anthropic response content blocks into text + tool calls.

        Args:
            content_blocks: Anthropic response content blocks

        Returns:
            Tuple of (text_content, tool_calls)
        """
        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []

        for block in content_blocks:
            if block["type"] == "text":
                text_parts.append(block["text"])
            elif block["type"] == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block["id"],
                        name=block["name"],
                        arguments=json.dumps(block.get("input") or {}),
                    )
                )

        return "\n".join(text_parts), tool_calls

    def _build_payload(
        self,
        prompt: Prompt,
        tools: list[dict[str, Any]] | None,
        options: GenerateOptions,
    ) -> dict[str, Any]:
        system_prompt, anthropic_messages = self._convert_messages(
            prompt_to_messages(prompt, options.system_prompt)
        )

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": anthropic_messages,
            "max_tokens": options.max_tokens or self.max_tokens,
            "temperature": options.temperature if options.temperature is not None else self.temperature,
        }

        if system_prompt:
            payload["system"] = system_prompt

        if tools:
            payload["tools"] = self._convert_tools(tools)

        if options.stop:
            payload["stop_sequences"] = options.stop

        return payload

    async def generate(self, prompt: Prompt, options: GenerateOptions | None = None) -> str:
        """Generate plain text from Anthropic Claude."""
        response = await self.generate_with_tools(prompt, [], options)
        return response.content

    async def generate_with_tools(
        self,
        prompt: Prompt,
        tools: list[dict[str, Any]],
        options: GenerateOptions | None = None,
    ) -> CompletionResponse:
        """Generate a completion from Anthropic Claude.

        Args:
            prompt: Prompt string or conversation history
            tools: Available tools in OpenAI function format
            options: Generation options

        Returns:
            CompletionResponse with content and optional tool calls
        """
        options = options or GenerateOptions()
        payload = self._build_payload(prompt, tools, options)

        try:
            data = await run_cancellable(self._post(payload), options.abort_signal, self.provider)
        except Exception as e:
            raise self._handle_error(e) from e

        content_text, tool_calls = self._parse_content(data.get("content", []))

        usage = None
        if data.get("usage"):
            input_tokens = data["usage"].get("input_tokens", 0)
            output_tokens = data["usage"].get("output_tokens", 0)
            usage = Usage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            )

        return CompletionResponse(
            content=content_text,
            tool_calls=tool_calls if tool_calls else None,
            finish_reason=normalize_finish_reason(data.get("stop_reason", "end_turn")),
            usage=usage,
        )

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self.client.post("/v1/messages", json=payload)
        response.raise_for_status()
        return response.json()

    async def generate_with_tools_stream(
        self,
        prompt: Prompt,
        tools: list[dict[str, Any]],
        on_chunk: StreamCallback,
        options: GenerateOptions | None = None,
    ) -> CompletionResponse:
        """Stream a completion from Anthropic Claude.

        Text deltas are forwarded as they arrive; ``tool_use`` blocks are
        assembled from their ``input_json_delta`` fragments.
        """
        options = options or GenerateOptions()
        payload = self._build_payload(prompt, tools, options)
        payload["stream"] = True

        try:
            response = await run_cancellable(
                self._consume_stream(payload, on_chunk),
                options.abort_signal,
                self.provider,
            )
        except Exception as e:
            raise self._handle_error(e) from e

        on_chunk(StreamChunk(type="done", response=response))
        return response

    async def _consume_stream(self, payload: dict[str, Any], on_chunk: StreamCallback) -> CompletionResponse:
        text_parts: list[str] = []
        tool_blocks: dict[int, dict[str, str]] = {}
        stop_reason: str | None = None
        input_tokens = 0
        output_tokens = 0

        async with self.client.stream("POST", "/v1/messages", json=payload) as response:
            if response.status_code >= 400:
                await response.aread()
                response.raise_for_status()

            async for line in response.aiter_lines():
                if not line.startswith("data: "):
                    continue
                data = json.loads(line[6:])
                event_type = data.get("type")

                if event_type == "message_start":
                    usage = data.get("message", {}).get("usage", {})
                    input_tokens = usage.get("input_tokens", 0)

                elif event_type == "content_block_start":
                    block = data.get("content_block", {})
                    if block.get("type") == "tool_use":
                        index = data["index"]
                        tool_blocks[index] = {"id": block["id"], "name": block["name"], "arguments": ""}
                        on_chunk(
                            StreamChunk(
                                type="tool_call",
                                tool_call=ToolCallDelta(index=index, id=block["id"], name=block["name"]),
                            )
                        )

                elif event_type == "content_block_delta":
                    delta = data.get("delta", {})
                    if delta.get("type") == "text_delta":
                        text_parts.append(delta["text"])
                        on_chunk(StreamChunk(type="content", content=delta["text"]))
                    elif delta.get("type") == "input_json_delta":
                        index = data["index"]
                        fragment = delta.get("partial_json", "")
                        tool_blocks[index]["arguments"] += fragment
                        on_chunk(
                            StreamChunk(
                                type="tool_call",
                                tool_call=ToolCallDelta(index=index, arguments=fragment),
                            )
                        )

                elif event_type == "message_delta":
                    stop_reason = data.get("delta", {}).get("stop_reason") or stop_reason
                    output_tokens = data.get("usage", {}).get("output_tokens", output_tokens)

                elif event_type == "error":
                    error = data.get("error", {})
                    raise LLMError(
                        error.get("message", "Stream error"),
                        self._map_error_type(error.get("type")),
                        self.provider,
                    )

        tool_calls = [
            ToolCall(id=block["id"], name=block["name"], arguments=block["arguments"] or "{}")
            for _, block in sorted(tool_blocks.items())
        ]

        return CompletionResponse(
            content="".join(text_parts),
            tool_calls=tool_calls or None,
            finish_reason=normalize_finish_reason(stop_reason),
            usage=Usage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
        )

    async def embed(self, text: str) -> EmbeddingResult:
        """Claude has no embeddings endpoint."""
        raise LLMError(
            "Anthropic does not provide an embeddings API",
            LLMErrorCode.INVALID_REQUEST,
            self.provider,
        )

    def _handle_error(self, error: Exception) -> LLMError:
        """Classify an httpx exception."""
        if isinstance(error, LLMError):
            return error

        if isinstance(error, httpx.TimeoutException):
            return LLMError(str(error) or "Request timed out", LLMErrorCode.TIMEOUT, self.provider, error)

        if isinstance(error, httpx.HTTPStatusError):
            message, error_type = self._error_details(error.response)
            code = self._map_status(error.response.status_code, message)
            if code is LLMErrorCode.UNKNOWN_ERROR:
                code = self._map_error_type(error_type)
            return LLMError(message, code, self.provider, error)

        if isinstance(error, httpx.TransportError):
            return LLMError(str(error) or type(error).__name__, LLMErrorCode.NETWORK_ERROR, self.provider, error)

        return LLMError(str(error) or type(error).__name__, LLMErrorCode.UNKNOWN_ERROR, self.provider, error)

    @staticmethod
    def _error_details(response: httpx.Response) -> tuple[str, str | None]:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}", None
        error = body.get("error", {}) if isinstance(body, dict) else {}
        return error.get("message", f"HTTP {response.status_code}"), error.get("type")

    @staticmethod
    def _map_status(status: int, message: str) -> LLMErrorCode:
        if status in (401, 403):
            return LLMErrorCode.AUTHENTICATION_ERROR
        if status in (429, 529):
            return LLMErrorCode.RATE_LIMIT_ERROR
        if status == 400:
            lowered = message.lower()
            if "prompt is too long" in lowered or ("context" in lowered and "length" in lowered):
                return LLMErrorCode.CONTEXT_LENGTH_EXCEEDED
            return LLMErrorCode.INVALID_REQUEST
        if status == 404:
            return LLMErrorCode.MODEL_NOT_FOUND
        if status == 408:
            return LLMErrorCode.TIMEOUT
        return LLMErrorCode.UNKNOWN_ERROR

    @staticmethod
    def _map_error_type(error_type: str | None) -> LLMErrorCode:
        return {
            "authentication_error": LLMErrorCode.AUTHENTICATION_ERROR,
            "permission_error": LLMErrorCode.AUTHENTICATION_ERROR,
            "rate_limit_error": LLMErrorCode.RATE_LIMIT_ERROR,
            "overloaded_error": LLMErrorCode.RATE_LIMIT_ERROR,
            "invalid_request_error": LLMErrorCode.INVALID_REQUEST,
            "not_found_error": LLMErrorCode.MODEL_NOT_FOUND,
        }.get(error_type or "", LLMErrorCode.UNKNOWN_ERROR)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()
