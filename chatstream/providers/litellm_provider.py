"""Universal LiteLLM adapter implementing the ModelProvider interface.

Routes completion requests to any LLM provider via LiteLLM's unified API.
Handles streaming delivery, token tracking, cost calculation, timeouts,
and retry with exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
import os

import litellm

# Suppress LiteLLM's "Give Feedback / Get Help" and "Provider List" banners
litellm.suppress_debug_info = True

from chatstream.errors import ModelCallError
from chatstream.providers.base import ChunkHandler, ModelProvider
from chatstream.schemas.chat import TokenUsage
from chatstream.schemas.config import ModelConfig
from chatstream.schemas.streaming import CompletionResult, StreamChunk

logger = logging.getLogger(__name__)

# Max retries for transient failures
_MAX_RETRIES = 3
_BASE_BACKOFF = 1.0  # seconds

_RETRYABLE = (
    litellm.RateLimitError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
    litellm.APIConnectionError,
)


def short_error_reason(error: BaseException) -> str:
    """Extract a short, user-friendly reason from a LiteLLM error.

    Maps error types and status codes to concise descriptions instead
    of dumping full JSON error payloads.
    """
    error_str = str(error).lower()
    if "rate" in error_str or "429" in error_str:
        return "rate limit"
    if "overloaded" in error_str or "529" in error_str:
        return "overloaded"
    if "timeout" in error_str or "timed out" in error_str or isinstance(error, TimeoutError):
        return "timeout"
    if "503" in error_str or "unavailable" in error_str:
        return "service unavailable"
    if "500" in error_str or "internal" in error_str:
        return "server error"
    if "connection" in error_str:
        return "connection error"
    return str(error)[:80]


class LiteLLMProvider(ModelProvider):
    """Universal LLM adapter powered by LiteLLM.

    Routes calls to any provider (Anthropic, OpenAI, Google, local
    OpenAI-compatible proxies) through litellm.acompletion().
    """

    def __init__(self, config: ModelConfig) -> None:
        super().__init__(config)
        # Resolve API key from environment
        self._api_key = os.environ.get(config.api_key_env, "")

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str,
        *,
        timeout: int = 120,
    ) -> CompletionResult:
        """Send a completion request via LiteLLM.

        Raises:
            TimeoutError: If the call exceeds timeout after all retries.
            ModelCallError: If the call fails after all retries.
        """
        full_messages = [{"role": "system", "content": system}, *messages]
        kwargs = self._build_completion_kwargs(full_messages, timeout)

        response = await self._call_with_retry(kwargs)

        return CompletionResult(
            content=self._extract_content(response),
            model=self._config.model,
            token_usage=self._build_token_usage(getattr(response, "usage", None), 0),
        )

    async def complete_streaming(
        self,
        messages: list[dict[str, str]],
        system: str,
        *,
        timeout: int = 120,
        on_chunk: ChunkHandler | None = None,
    ) -> CompletionResult:
        """Send a streaming completion request via LiteLLM.

        Streams token-by-token, awaiting on_chunk for each delta before
        reading the next one, so the callback is never re-entered.

        Raises:
            TimeoutError: If opening the stream times out after all retries.
            ModelCallError: If the call fails after all retries or the
                stream breaks mid-way.
        """
        full_messages = [{"role": "system", "content": system}, *messages]
        kwargs = self._build_completion_kwargs(full_messages, timeout)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        response = await self._call_streaming_with_retry(kwargs)

        accumulated = ""
        chunk_count = 0
        usage = None

        try:
            async for chunk in response:
                usage = getattr(chunk, "usage", None) or usage
                if not chunk.choices or not chunk.choices[0].delta:
                    continue
                delta = chunk.choices[0].delta
                content = getattr(delta, "content", None) or ""

                if content:
                    accumulated += content
                    chunk_count += 1  # approximate, 1 chunk ~= 1 token

                if on_chunk is not None:
                    outcome = on_chunk(StreamChunk(content=content))
                    if asyncio.iscoroutine(outcome):
                        await outcome
        except _RETRYABLE as e:
            raise ModelCallError(
                f"Stream from {self._config.model} broke after "
                f"{chunk_count} chunks ({short_error_reason(e)})"
            ) from e

        return CompletionResult(
            content=accumulated,
            model=self._config.model,
            token_usage=self._build_token_usage(usage, chunk_count),
        )

    def _build_completion_kwargs(
        self,
        messages: list[dict[str, str]],
        timeout: int,
    ) -> dict:
        """Build the kwargs dict for litellm.acompletion."""
        kwargs: dict = {
            "model": self._config.model,
            "messages": messages,
            "timeout": float(timeout),
        }

        if self._api_key:
            kwargs["api_key"] = self._api_key

        if self._config.api_base:
            kwargs["api_base"] = self._config.api_base

        return kwargs

    async def _call_with_retry(self, kwargs: dict):
        """Call litellm.acompletion with exponential backoff retry.

        Retries on transient errors (rate limits, server errors, timeouts).
        Non-retryable errors (auth, invalid request) are raised immediately.
        Used for both plain and streaming calls; a streaming call is only
        retried while opening the stream.

        Raises:
            TimeoutError: If all retries time out.
            ModelCallError: If all retries fail with non-timeout errors.
        """
        last_error: Exception | None = None

        for attempt in range(_MAX_RETRIES):
            try:
                return await litellm.acompletion(**kwargs)
            except TimeoutError:
                last_error = TimeoutError(
                    f"Model call timed out after {kwargs.get('timeout')}s "
                    f"(attempt {attempt + 1}/{_MAX_RETRIES})"
                )
            except litellm.AuthenticationError:
                raise ModelCallError(
                    f"Authentication failed for {self._config.model}. "
                    f"Check that {self._config.api_key_env} is set correctly."
                ) from None
            except litellm.BadRequestError as e:
                raise ModelCallError(
                    f"Bad request to {self._config.model}: {e}"
                ) from e
            except _RETRYABLE as e:
                last_error = e

            if attempt < _MAX_RETRIES - 1:
                backoff = _BASE_BACKOFF * (2**attempt)
                logger.warning(
                    "Retry %d/%d for %s (%s, backoff: %.1fs)",
                    attempt + 1,
                    _MAX_RETRIES,
                    self._config.display_name,
                    short_error_reason(last_error),
                    backoff,
                )
                await asyncio.sleep(backoff)

        if isinstance(last_error, TimeoutError):
            raise last_error
        raise ModelCallError(
            f"Model call to {self._config.model} failed after {_MAX_RETRIES} "
            f"retries: {short_error_reason(last_error)}"
        ) from last_error

    _call_streaming_with_retry = _call_with_retry

    def _extract_content(self, response) -> str:
        """Extract text content from a LiteLLM response."""
        if not response.choices:
            return ""
        message = response.choices[0].message
        return message.content or "" if message else ""

    def _build_token_usage(self, usage, fallback_completion: int) -> TokenUsage:
        """Build TokenUsage from LiteLLM usage data.

        Streams don't always report usage; fallback_completion is the
        approximate completion token count used in that case.
        """
        prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
        completion_tokens = (
            getattr(usage, "completion_tokens", 0) or fallback_completion
        )
        return TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost=self.calculate_cost(prompt_tokens, completion_tokens),
        )
