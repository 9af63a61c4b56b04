"""Request and response schemas for the HTTP API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from chatstream.schemas.chat import Conversation, Message


class CreateConversationRequest(BaseModel):
    """Open a new conversation for a user."""

    user_id: str = Field(min_length=1, description="Owning user identifier")
    title: str | None = Field(default=None, description="Optional explicit title")


class PostMessageRequest(BaseModel):
    """A user message that triggers an assistant reply."""

    user_id: str = Field(min_length=1, description="Author, must own the conversation")
    content: str = Field(description="Message text")


class ConversationDetail(BaseModel):
    """A conversation with its display title and ordered messages."""

    conversation: Conversation
    display_title: str
    messages: list[Message] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    """Outcome of deleting a conversation."""

    deleted: bool = True
    next_conversation_id: str | None = Field(
        default=None, description="Most recent remaining conversation of the owner",
    )
