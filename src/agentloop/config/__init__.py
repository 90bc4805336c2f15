"""Configuration schema and loading."""

from agentloop.config.loader import ConfigError, load_config, save_config
from agentloop.config.schema import (
    LLM_TASKS,
    AgentLoopConfig,
    LLMConfig,
    LLMTask,
    LoopConfig,
    ProviderConfig,
    RetryConfig,
    TaskAssignment,
)

__all__ = [
    "LLM_TASKS",
    "AgentLoopConfig",
    "ConfigError",
    "LLMConfig",
    "LLMTask",
    "LoopConfig",
    "ProviderConfig",
    "RetryConfig",
    "TaskAssignment",
    "load_config",
    "save_config",
]
