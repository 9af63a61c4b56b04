"""Abstract base class for all model providers.

Defines the ModelProvider interface that every LLM adapter must implement.
The completion orchestrator interacts exclusively through this interface
and never calls provider SDKs directly.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from chatstream.schemas.config import ModelConfig
from chatstream.schemas.streaming import CompletionResult, StreamChunk

# Chunk callbacks may be plain functions or coroutine functions
ChunkHandler = Callable[[StreamChunk], Awaitable[None] | None]


class ModelProvider(ABC):
    """Abstract interface for any LLM that can answer a conversation.

    Initialized from a ModelConfig loaded from the TOML registry. Exposes
    identity, cost info, and async complete()/complete_streaming() methods.
    """

    def __init__(self, config: ModelConfig) -> None:
        self._config = config

    # ── Identity ──────────────────────────────────────────────

    @property
    def provider_id(self) -> str:
        """Provider identifier (e.g. 'anthropic', 'openai')."""
        return self._config.provider

    @property
    def model_id(self) -> str:
        """LiteLLM model identifier used for routing."""
        return self._config.model

    @property
    def display_name(self) -> str:
        """Human-friendly model name for CLI output."""
        return self._config.display_name

    @property
    def config(self) -> ModelConfig:
        """The full ModelConfig backing this provider."""
        return self._config

    # ── Core interface ────────────────────────────────────────

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str,
        *,
        timeout: int = 120,
    ) -> CompletionResult:
        """Send a completion request and return the full response.

        Args:
            messages: Conversation messages in OpenAI format
                      (list of {"role": ..., "content": ...} dicts).
            system: System prompt for this call.
            timeout: Timeout in seconds for the model call.

        Raises:
            TimeoutError: If the model call exceeds the timeout.
            ModelCallError: If the model call fails after all retries.
        """

    async def complete_streaming(
        self,
        messages: list[dict[str, str]],
        system: str,
        *,
        timeout: int = 120,
        on_chunk: ChunkHandler | None = None,
    ) -> CompletionResult:
        """Send a streaming completion request.

        Default implementation calls complete() and delivers the whole
        response as a single chunk. Providers that support streaming
        should override this method.
        """
        result = await self.complete(messages, system, timeout=timeout)
        if on_chunk is not None and result.content:
            outcome = on_chunk(StreamChunk(content=result.content))
            if asyncio.iscoroutine(outcome):
                await outcome
        return result

    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        """Calculate the USD cost for a given token count."""
        input_cost = (prompt_tokens / 1_000_000) * self._config.cost_input
        output_cost = (completion_tokens / 1_000_000) * self._config.cost_output
        return input_cost + output_cost
