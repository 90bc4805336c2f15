"""SiliconFlow client using the OpenAI-compatible API."""

from agentloop.llm.openai_compat import OpenAICompatibleClient


class SiliconFlowClient(OpenAICompatibleClient):
    """LLM adapter for SiliconFlow hosted models.

    SiliconFlow serves open models (Qwen, DeepSeek, GLM, BGE embeddings)
    behind an OpenAI-compatible endpoint.
    """

    provider = "siliconflow"
    default_base_url = "https://api.siliconflow.cn/v1"
    default_embedding_model = "BAAI/bge-m3"
