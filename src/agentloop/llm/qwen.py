"""Qwen client using DashScope's OpenAI-compatible API."""

from agentloop.llm.openai_compat import OpenAICompatibleClient


class QwenClient(OpenAICompatibleClient):
    """LLM adapter for Alibaba Qwen models.

    DashScope's compatible mode exposes the OpenAI ``/v1/chat/completions``
    and ``/v1/embeddings`` endpoints, so this is a thin wrapper that sets
    the DashScope defaults.
    """

    provider = "qwen"
    default_base_url = "https://dashscope.aliyuncs.com/compatible-mode/v1"
    default_embedding_model = "text-embedding-v2"
