"""Typing indicator for conversations.

Broadcasts the "assistant is composing" flag. Nothing is persisted: a
viewer that reconnects sees the hidden default until the next update.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from chatstream.broadcast.broadcaster import (
    TYPING_TARGET,
    StreamBroadcaster,
    conversation_stream,
)
from chatstream.broadcast.render import render_typing_indicator

logger = logging.getLogger(__name__)


class TypingIndicator:
    """Shows and hides a conversation's typing indicator."""

    def __init__(self, broadcaster: StreamBroadcaster) -> None:
        self._broadcaster = broadcaster

    async def set_visible(self, conversation_id: str, visible: bool) -> None:
        """Broadcast the indicator state. Repeating a value is harmless."""
        await self._broadcaster.replace(
            conversation_stream(conversation_id),
            TYPING_TARGET,
            render_typing_indicator(visible),
        )

    @asynccontextmanager
    async def composing(self, conversation_id: str) -> AsyncIterator[TypingIndicator]:
        """Show the indicator for the duration of the block.

        The indicator is hidden on exit however the block ends,
        including cancellation.
        """
        await self.set_visible(conversation_id, True)
        try:
            yield self
        finally:
            await self.set_visible(conversation_id, False)
            logger.debug("Typing indicator released for %s", conversation_id)
