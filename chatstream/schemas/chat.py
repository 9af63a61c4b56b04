"""Conversation and message schemas.

Defines the persisted records (Conversation, Message), token accounting
(TokenUsage), and the lightweight ConversationSummary used for listings.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class MessageRole(StrEnum):
    """Author of a message within a conversation."""

    USER = "user"
    ASSISTANT = "assistant"


class TokenUsage(BaseModel):
    """Token consumption and cost tracking for a single model call."""

    prompt_tokens: int = Field(default=0, ge=0, description="Number of input tokens consumed")
    completion_tokens: int = Field(
        default=0, ge=0, description="Number of output tokens generated"
    )
    cost: float = Field(default=0.0, ge=0.0, description="Estimated cost in USD for this call")


class Conversation(BaseModel):
    """A thread of messages between one user and the assistant."""

    id: str = Field(description="Unique conversation identifier (UUID hex)")
    user_id: str = Field(min_length=1, description="Owning user identifier")
    title: str | None = Field(
        default=None, description="Display title, set at most once",
    )
    created_at: datetime = Field(description="When the conversation was created")
    updated_at: datetime = Field(description="Last activity timestamp")


class Message(BaseModel):
    """One authored unit of content within a conversation.

    Messages are ordered by created_at (ties broken by id). Assistant
    messages carry token counts and the model that produced them once
    the stream has completed.
    """

    id: int = Field(description="Database row identifier")
    conversation_id: str = Field(description="Owning conversation identifier")
    role: MessageRole = Field(description="Message author")
    content: str = Field(default="", description="Message text")
    created_at: datetime = Field(description="Creation timestamp, the sole ordering key")
    reply_to: int | None = Field(
        default=None,
        description="Triggering user message id for assistant replies",
    )
    model_id: str = Field(default="", description="LiteLLM model that produced the reply")
    input_tokens: int | None = Field(default=None, ge=0, description="Prompt tokens")
    output_tokens: int | None = Field(default=None, ge=0, description="Completion tokens")


class ConversationSummary(BaseModel):
    """Lightweight conversation entry for sidebars and listings."""

    id: str = Field(description="Conversation identifier")
    user_id: str = Field(description="Owning user identifier")
    title: str = Field(description="Display title (explicit, derived, or fallback)")
    updated_at: datetime = Field(description="Last activity timestamp")
    message_count: int = Field(default=0, ge=0, description="Number of stored messages")
