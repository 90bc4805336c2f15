"""Factory function for creating LLM clients from configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from agentloop.llm.anthropic import AnthropicClient
from agentloop.llm.openai_compat import OpenAIClient, OpenAICompatibleClient
from agentloop.llm.qwen import QwenClient
from agentloop.llm.siliconflow import SiliconFlowClient

if TYPE_CHECKING:
    from agentloop.config.schema import ProviderConfig
    from agentloop.llm.client import LLMClient


def _sampling_kwargs(config: ProviderConfig) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"timeout": config.timeout}
    if config.temperature is not None:
        kwargs["temperature"] = config.temperature
    if config.max_tokens is not None:
        kwargs["max_tokens"] = config.max_tokens
    return kwargs


def create_llm_client(config: ProviderConfig) -> LLMClient:
    """Create an LLM client for one provider configuration.

    Args:
        config: Provider configuration.

    Returns:
        An LLM client for the configured provider.

    Raises:
        ValueError: If the provider is not recognised.
    """
    provider = config.provider
    kwargs = _sampling_kwargs(config)

    if provider == "openai":
        return OpenAIClient(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            **kwargs,
        )
    elif provider == "claude":
        return AnthropicClient(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            **kwargs,
        )
    elif provider == "qwen":
        return QwenClient(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            **kwargs,
        )
    elif provider == "siliconflow":
        return SiliconFlowClient(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            **kwargs,
        )
    elif provider == "custom":
        if not config.base_url:
            raise ValueError("Custom provider requires base_url")
        return OpenAICompatibleClient(
            model=config.model,
            api_key=config.api_key or "none",
            base_url=config.base_url,
            **kwargs,
        )
    else:
        raise ValueError(f"Unknown LLM provider: {provider}")
