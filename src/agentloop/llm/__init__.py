"""LLM adapters and the model manager."""

from .anthropic import AnthropicClient
from .cancellation import linked_signal, run_cancellable
from .client import (
    CompletionResponse,
    EmbeddingResult,
    GenerateOptions,
    LLMClient,
    Message,
    StreamChunk,
    ToolCall,
    ToolCallDelta,
    Usage,
)
from .errors import LLMError, LLMErrorCode
from .factory import create_llm_client
from .manager import AdapterRegistry, ModelManager, create_simple_manager
from .openai_compat import OpenAIClient, OpenAICompatibleClient
from .qwen import QwenClient
from .siliconflow import SiliconFlowClient

__all__ = [
    "AdapterRegistry",
    "AnthropicClient",
    "CompletionResponse",
    "EmbeddingResult",
    "GenerateOptions",
    "LLMClient",
    "LLMError",
    "LLMErrorCode",
    "Message",
    "ModelManager",
    "OpenAIClient",
    "OpenAICompatibleClient",
    "QwenClient",
    "SiliconFlowClient",
    "StreamChunk",
    "ToolCall",
    "ToolCallDelta",
    "Usage",
    "create_llm_client",
    "create_simple_manager",
    "linked_signal",
    "run_cancellable",
]
