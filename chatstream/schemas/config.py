"""Model registry and chat configuration schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

_DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
_DEFAULT_ERROR_NOTICE = "Sorry, I encountered an error: {error}"


class ModelConfig(BaseModel):
    """Configuration for a single LLM model in the registry.

    Loaded from models.toml. Each entry provides the LiteLLM routing
    information and cost data used for token accounting.
    """

    provider: str = Field(description="Provider identifier (e.g. 'anthropic', 'openai')")
    model: str = Field(description="LiteLLM model identifier (e.g. 'gpt-4o-mini')")
    display_name: str = Field(description="Human-friendly model name for CLI output")
    api_key_env: str = Field(description="Environment variable name holding the API key")
    api_base: str = Field(default="", description="Custom API base URL (empty = provider default)")
    context_window: int = Field(gt=0, description="Maximum context window size in tokens")
    cost_input: float = Field(ge=0.0, description="Cost per 1M input tokens in USD")
    cost_output: float = Field(ge=0.0, description="Cost per 1M output tokens in USD")


class ChatConfig(BaseModel):
    """Top-level configuration for completion runs.

    Loaded from defaults.toml and overridden by CLI flags.
    """

    model: str = Field(default="gpt-4o-mini", description="Registry key of the chat model")
    system_prompt: str = Field(
        default=_DEFAULT_SYSTEM_PROMPT, description="System prompt sent with every run",
    )
    timeout: int = Field(default=120, gt=0, description="Timeout in seconds per model call")
    db_path: str = Field(
        default="~/.chatstream/chats.db", description="SQLite database path",
    )
    max_concurrent_runs: int = Field(
        default=4, ge=1, description="Maximum completion runs executing at once",
    )
    serialize_per_conversation: bool = Field(
        default=True,
        description="Run at most one completion per conversation at a time",
    )
    history_limit: int = Field(
        default=0, ge=0, description="Most recent messages sent to the model (0 = all)",
    )
    error_notice: str = Field(
        default=_DEFAULT_ERROR_NOTICE,
        description="Assistant text shown when a run fails; {error} is substituted",
    )
