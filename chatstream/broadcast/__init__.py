"""Live update broadcasting.

Streams incremental and terminal message updates to every viewer of a
conversation, plus sidebar updates to the owning user. The optional
FastAPI WebSocket transport lives in chatstream.broadcast.server.
"""

from chatstream.broadcast.broadcaster import (
    MESSAGES_TARGET,
    SIDEBAR_TARGET,
    TYPING_TARGET,
    StreamBroadcaster,
    UpdateListener,
    content_target,
    conversation_stream,
    message_target,
    sidebar_item_target,
    user_stream,
)

__all__ = [
    "MESSAGES_TARGET",
    "SIDEBAR_TARGET",
    "TYPING_TARGET",
    "StreamBroadcaster",
    "UpdateListener",
    "content_target",
    "conversation_stream",
    "message_target",
    "sidebar_item_target",
    "user_stream",
]
