"""chatstream schema definitions.

All Pydantic v2 models shared by the store, broadcaster, providers,
and completion orchestrator.
"""

from chatstream.schemas.api import (
    ConversationDetail,
    CreateConversationRequest,
    DeleteResponse,
    PostMessageRequest,
)
from chatstream.schemas.broadcast import BroadcastAction, StreamUpdate
from chatstream.schemas.chat import (
    Conversation,
    ConversationSummary,
    Message,
    MessageRole,
    TokenUsage,
)
from chatstream.schemas.config import ChatConfig, ModelConfig
from chatstream.schemas.streaming import CompletionResult, StreamChunk

__all__ = [
    "BroadcastAction",
    "ChatConfig",
    "CompletionResult",
    "Conversation",
    "ConversationDetail",
    "ConversationSummary",
    "CreateConversationRequest",
    "DeleteResponse",
    "Message",
    "MessageRole",
    "ModelConfig",
    "PostMessageRequest",
    "StreamChunk",
    "StreamUpdate",
    "TokenUsage",
]
