"""Streaming schemas for real-time token delivery.

Defines the StreamChunk record passed to complete_streaming() callbacks
and the CompletionResult returned once the stream has finished.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from chatstream.schemas.chat import MessageRole, TokenUsage


class StreamChunk(BaseModel):
    """A single incremental fragment of model output.

    Content may be empty (role-only or keep-alive deltas); consumers
    must ignore empty chunks.
    """

    role: MessageRole = Field(default=MessageRole.ASSISTANT, description="Producing role")
    content: str = Field(default="", description="New text in this chunk")


class CompletionResult(BaseModel):
    """The outcome of a finished model call."""

    content: str = Field(default="", description="Full accumulated response text")
    model: str = Field(default="", description="LiteLLM model identifier")
    token_usage: TokenUsage = Field(
        default_factory=TokenUsage, description="Token counts and cost",
    )
