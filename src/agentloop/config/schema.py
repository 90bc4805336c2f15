"""Pydantic models for agentloop.yaml configuration."""

from typing import Literal

from pydantic import BaseModel, Field, model_validator

ProviderName = Literal["openai", "claude", "qwen", "siliconflow", "custom"]

LLMTask = Literal["intent_parsing", "knowledge_retrieval", "tool_calling", "response_generation"]

LLM_TASKS: tuple[LLMTask, ...] = (
    "intent_parsing",
    "knowledge_retrieval",
    "tool_calling",
    "response_generation",
)


class ProviderConfig(BaseModel):
    """Connection settings for one LLM provider/model pair."""

    provider: ProviderName = Field(default="openai", description="LLM vendor")
    api_key: str = Field(default="", description="API key (use ${ENV_VAR} in YAML to avoid storing it)")
    model: str = Field(default="gpt-4o-mini", description="Model identifier")
    base_url: str | None = Field(default=None, description="Endpoint override (required for 'custom')")
    temperature: float | None = Field(default=None, description="Sampling temperature", ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, description="Maximum completion tokens", ge=1)
    timeout: float = Field(default=120.0, description="Request timeout in seconds", gt=0)

    @model_validator(mode="after")
    def _custom_requires_base_url(self) -> "ProviderConfig":
        if self.provider == "custom" and not self.base_url:
            raise ValueError("provider 'custom' requires base_url")
        return self

    @property
    def adapter_key(self) -> tuple[str, str, str]:
        """Identity of the adapter serving this configuration."""
        return (self.provider, self.model, self.base_url or "default")


class RetryConfig(BaseModel):
    """Retry policy for model calls."""

    max_retries: int = Field(default=3, description="Retries after the first attempt", ge=0, le=10)
    initial_delay_ms: int = Field(default=1000, description="First backoff delay", ge=0)
    max_delay_ms: int = Field(default=10000, description="Upper bound for backoff delay", ge=0)

    @model_validator(mode="after")
    def _delays_ordered(self) -> "RetryConfig":
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        return self


class TaskAssignment(BaseModel):
    """Per-task provider overrides, used only in multi-model mode."""

    intent_parsing: ProviderConfig | None = None
    knowledge_retrieval: ProviderConfig | None = None
    tool_calling: ProviderConfig | None = None
    response_generation: ProviderConfig | None = None


class LLMConfig(BaseModel):
    """Model manager configuration."""

    mode: Literal["single", "multi"] = Field(
        default="single",
        description="'single' sends every task to the default model, 'multi' honours task_assignment",
    )
    default: ProviderConfig = Field(default_factory=ProviderConfig)
    fallback: ProviderConfig | None = Field(
        default=None,
        description="Model tried once after the primary's retries are exhausted",
    )
    task_assignment: TaskAssignment = Field(default_factory=TaskAssignment)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    def provider_for_task(self, task: LLMTask) -> ProviderConfig:
        """Resolve the provider configuration that handles ``task``."""
        if self.mode == "single":
            return self.default
        return getattr(self.task_assignment, task, None) or self.default

    def configured_providers(self) -> list[ProviderConfig]:
        """All provider configurations the manager may need, default first."""
        providers = [self.default]
        if self.fallback is not None:
            providers.append(self.fallback)
        if self.mode == "multi":
            for task in LLM_TASKS:
                assigned = getattr(self.task_assignment, task)
                if assigned is not None:
                    providers.append(assigned)
        return providers


class LoopConfig(BaseModel):
    """Loop controller configuration."""

    max_iterations: int = Field(default=10, description="Maximum reasoning iterations per run", ge=1, le=100)
    iteration_timeout: float | None = Field(
        default=30.0,
        description="Seconds allowed for each model call (None disables)",
        gt=0,
    )
    tool_timeout: float | None = Field(
        default=30.0,
        description="Seconds allowed for each tool call (None disables)",
        gt=0,
    )
    parallel_tool_calls: bool = Field(
        default=True,
        description="Run the tool calls of one model turn concurrently",
    )
    continue_on_error: bool = Field(
        default=True,
        description="Feed failed tool results back to the model instead of ending the run",
    )
    stream_responses: bool = Field(
        default=True,
        description="Use streaming model calls when an event sink is attached",
    )
    system_prompt: str | None = Field(
        default=None,
        description="System prompt used when a run does not supply one",
    )


class AgentLoopConfig(BaseModel):
    """Root configuration schema for agentloop."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
