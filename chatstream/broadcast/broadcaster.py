"""Stream broadcaster for live viewer updates.

Publishes named updates (append, update, replace, ...) to every
subscriber of a stream. A stream is keyed by conversation for message
updates, or by user for the conversation sidebar. Delivery is
fire-and-forget: subscriber queues are filled without waiting and
listener failures are logged, never raised to the publisher.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from chatstream.schemas.broadcast import BroadcastAction, StreamUpdate

logger = logging.getLogger(__name__)

# Fixed target names shared with the client
MESSAGES_TARGET = "messages"
TYPING_TARGET = "typing-indicator"
SIDEBAR_TARGET = "sidebar-chats"

# Type alias for update listener callbacks
UpdateListener = Callable[[StreamUpdate], Any]


def conversation_stream(conversation_id: str) -> str:
    """Stream key for all viewers of one conversation."""
    return f"conversation_{conversation_id}"


def user_stream(user_id: str) -> str:
    """Stream key for one user's conversation sidebar."""
    return f"user_{user_id}_chats"


def message_target(message_id: int) -> str:
    """Target name of a whole message bubble."""
    return f"message-{message_id}"


def content_target(message_id: int) -> str:
    """Target name of a message's text region."""
    return f"message-content-{message_id}"


def sidebar_item_target(conversation_id: str) -> str:
    """Target name of one conversation entry in the sidebar."""
    return f"sidebar-chat-{conversation_id}"


class StreamBroadcaster:
    """Pushes StreamUpdates to subscribers and listeners.

    Subscribers (e.g. WebSocket connections) receive updates for a
    single stream through their own asyncio.Queue, so a slow viewer
    never blocks the publisher. Listeners receive every update on every
    stream and can be sync or async callables.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue[StreamUpdate]]] = defaultdict(list)
        self._listeners: list[UpdateListener] = []
        self._sequences: dict[str, itertools.count] = defaultdict(
            lambda: itertools.count(1)
        )

    # ── Subscription ──────────────────────────────────────────

    def subscribe(self, stream: str) -> asyncio.Queue[StreamUpdate]:
        """Register a new subscriber queue for a stream."""
        queue: asyncio.Queue[StreamUpdate] = asyncio.Queue()
        self._subscribers[stream].append(queue)
        logger.debug("Subscriber joined %s (%d total)", stream, len(self._subscribers[stream]))
        return queue

    def unsubscribe(self, stream: str, queue: asyncio.Queue[StreamUpdate]) -> None:
        """Remove a subscriber queue; unknown queues are ignored."""
        queues = [q for q in self._subscribers.get(stream, []) if q is not queue]
        if queues:
            self._subscribers[stream] = queues
        else:
            self._subscribers.pop(stream, None)

    def subscriber_count(self, stream: str) -> int:
        """Number of live subscribers on a stream."""
        return len(self._subscribers.get(stream, []))

    def forget(self, stream: str) -> None:
        """Drop the sequence counter of a stream that will not publish again."""
        self._sequences.pop(stream, None)

    def add_listener(self, listener: UpdateListener) -> None:
        """Register a listener to receive updates on every stream."""
        self._listeners.append(listener)

    def remove_listener(self, listener: UpdateListener) -> None:
        """Remove a previously registered listener."""
        self._listeners = [ln for ln in self._listeners if ln is not listener]

    # ── Publishing ────────────────────────────────────────────

    async def publish(
        self,
        stream: str,
        action: BroadcastAction,
        target: str,
        html: str = "",
    ) -> StreamUpdate:
        """Deliver one update to all subscribers and listeners of a stream.

        Updates on one stream carry strictly increasing sequence numbers
        in emission order. Listener exceptions are logged but never
        propagate.
        """
        update = StreamUpdate(
            stream=stream,
            action=action,
            target=target,
            html=html,
            sequence=next(self._sequences[stream]),
        )

        for queue in self._subscribers.get(stream, []):
            queue.put_nowait(update)

        for listener in self._listeners:
            try:
                result = listener(update)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Broadcast listener error for %s on %s", action, stream)

        return update

    async def append(self, stream: str, target: str, html: str) -> StreamUpdate:
        """Insert a new fragment at the end of a collection target."""
        return await self.publish(stream, BroadcastAction.APPEND, target, html)

    async def prepend(self, stream: str, target: str, html: str) -> StreamUpdate:
        """Insert a new fragment at the start of a collection target."""
        return await self.publish(stream, BroadcastAction.PREPEND, target, html)

    async def update(self, stream: str, target: str, content: str) -> StreamUpdate:
        """Replace the inner content of an existing region."""
        return await self.publish(stream, BroadcastAction.UPDATE, target, content)

    async def replace(self, stream: str, target: str, html: str) -> StreamUpdate:
        """Swap an existing region's full rendering."""
        return await self.publish(stream, BroadcastAction.REPLACE, target, html)

    async def remove(self, stream: str, target: str) -> StreamUpdate:
        """Remove a region from the page."""
        return await self.publish(stream, BroadcastAction.REMOVE, target)
