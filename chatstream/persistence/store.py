"""Conversation store for chats and their messages.

Provides the ConversationStore class that wraps low-level database
operations with Pydantic schema serialization/deserialization, the
title derivation rules, and sidebar notifications for the owning user.
"""

from __future__ import annotations

import functools
import logging
import uuid
from datetime import UTC, datetime

import aiosqlite

from chatstream.broadcast.broadcaster import (
    SIDEBAR_TARGET,
    StreamBroadcaster,
    conversation_stream,
    sidebar_item_target,
    user_stream,
)
from chatstream.broadcast.render import render_sidebar_item
from chatstream.errors import NotFound, PersistenceError
from chatstream.schemas.chat import (
    Conversation,
    ConversationSummary,
    Message,
    MessageRole,
    TokenUsage,
)

logger = logging.getLogger(__name__)

FALLBACK_TITLE = "New Chat"
TITLE_MAX_LENGTH = 50
_OMISSION = "..."


def truncate_title(text: str, length: int = TITLE_MAX_LENGTH) -> str:
    """Shorten text to at most ``length`` characters, marking the cut.

    The omission marker counts toward the limit, so a truncated title is
    exactly ``length`` characters long.
    """
    if len(text) <= length:
        return text
    return text[: length - len(_OMISSION)] + _OMISSION


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _wrap_db_errors(func):
    """Translate aiosqlite failures into PersistenceError."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except aiosqlite.Error as e:
            raise PersistenceError(f"{func.__name__} failed: {e}") from e

    return wrapper


class ConversationStore:
    """Persistent conversation store backed by SQLite.

    All methods are async and operate on an aiosqlite connection
    initialized by database.init_db(). When a broadcaster is supplied,
    creating or deleting a conversation notifies the owner's sidebar
    stream.
    """

    def __init__(
        self,
        db: aiosqlite.Connection,
        broadcaster: StreamBroadcaster | None = None,
    ) -> None:
        self._db = db
        self._db.row_factory = aiosqlite.Row
        self._broadcaster = broadcaster

    # ── Conversations ─────────────────────────────────────────

    @_wrap_db_errors
    async def create_conversation(
        self, user_id: str, title: str | None = None,
    ) -> Conversation:
        """Create a conversation owned by ``user_id``."""
        if not user_id:
            raise ValueError("A conversation must have an owner")

        now = _now()
        conversation_id = uuid.uuid4().hex
        await self._db.execute(
            "INSERT INTO conversations (id, user_id, title, created_at, updated_at)"
            " VALUES (?, ?, ?, ?, ?)",
            (conversation_id, user_id, title or None, now, now),
        )
        await self._db.commit()

        conversation = await self.get_conversation(conversation_id)
        logger.info("Created conversation %s for user %s", conversation_id, user_id)

        if self._broadcaster is not None:
            await self._broadcaster.prepend(
                user_stream(user_id),
                SIDEBAR_TARGET,
                render_sidebar_item(conversation, await self.display_title(conversation)),
            )
        return conversation

    @_wrap_db_errors
    async def get_conversation(self, conversation_id: str) -> Conversation:
        """Fetch a conversation by id.

        Raises:
            NotFound: If no such conversation exists.
        """
        async with self._db.execute(
            "SELECT * FROM conversations WHERE id = ?", (conversation_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise NotFound("Conversation", conversation_id)
        return self._row_to_conversation(row)

    @_wrap_db_errors
    async def list_conversations(
        self, user_id: str, limit: int = 50,
    ) -> list[ConversationSummary]:
        """List a user's conversations, most recently active first."""
        summaries: list[ConversationSummary] = []
        async with self._db.execute(
            """
            SELECT c.*, COUNT(m.id) AS message_count
            FROM conversations c
            LEFT JOIN messages m ON m.conversation_id = c.id
            WHERE c.user_id = ?
            GROUP BY c.id
            ORDER BY c.updated_at DESC
            LIMIT ?
            """,
            (user_id, limit),
        ) as cursor:
            rows = await cursor.fetchall()

        for row in rows:
            conversation = self._row_to_conversation(row)
            summaries.append(ConversationSummary(
                id=conversation.id,
                user_id=conversation.user_id,
                title=await self.display_title(conversation),
                updated_at=conversation.updated_at,
                message_count=row["message_count"],
            ))
        return summaries

    @_wrap_db_errors
    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and, by cascade, all of its messages.

        Returns True if a conversation was deleted, False if it didn't exist.
        """
        try:
            conversation = await self.get_conversation(conversation_id)
        except NotFound:
            return False

        await self._db.execute(
            "DELETE FROM conversations WHERE id = ?", (conversation_id,),
        )
        await self._db.commit()
        logger.info("Deleted conversation %s", conversation_id)

        if self._broadcaster is not None:
            await self._broadcaster.remove(
                user_stream(conversation.user_id),
                sidebar_item_target(conversation_id),
            )
            self._broadcaster.forget(conversation_stream(conversation_id))
        return True

    @_wrap_db_errors
    async def touch(self, conversation_id: str) -> None:
        """Bump the conversation's last-activity timestamp."""
        await self._db.execute(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            (_now(), conversation_id),
        )
        await self._db.commit()

    # ── Titles ────────────────────────────────────────────────

    async def display_title(self, conversation: Conversation) -> str:
        """Explicit title, else a preview of the first user message, else a fallback."""
        if conversation.title:
            return conversation.title
        first = await self.first_user_message(conversation.id)
        if first is not None and first.content.strip():
            return truncate_title(first.content)
        return FALLBACK_TITLE

    @_wrap_db_errors
    async def derive_title_from_first_message(
        self, conversation: Conversation, message: Message,
    ) -> Conversation:
        """Set the title from a user message if the conversation has none.

        A no-op for assistant messages, blank content, or conversations
        that already carry a title. The UPDATE is guarded on ``title IS
        NULL`` so the first caller wins even across connections.
        """
        if message.conversation_id != conversation.id:
            raise ValueError(
                f"Message {message.id} does not belong to conversation {conversation.id}"
            )
        if conversation.title or message.role != MessageRole.USER:
            return conversation

        snippet = truncate_title(message.content.strip())
        if not snippet:
            return conversation

        await self._db.execute(
            "UPDATE conversations SET title = ? WHERE id = ? AND title IS NULL",
            (snippet, conversation.id),
        )
        await self._db.commit()
        return await self.get_conversation(conversation.id)

    # ── Messages ──────────────────────────────────────────────

    @_wrap_db_errors
    async def create_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        *,
        reply_to: int | None = None,
    ) -> Message:
        """Append a message to a conversation and bump its activity time."""
        now = _now()
        cursor = await self._db.execute(
            "INSERT INTO messages (conversation_id, role, content, created_at, reply_to)"
            " VALUES (?, ?, ?, ?, ?)",
            (conversation_id, MessageRole(role).value, content, now, reply_to),
        )
        message_id = cursor.lastrowid
        await self._db.execute(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            (now, conversation_id),
        )
        await self._db.commit()
        logger.debug("Created %s message %s in %s", role, message_id, conversation_id)
        return await self.reload_message(message_id)

    @_wrap_db_errors
    async def update_message_content(self, message_id: int, content: str) -> None:
        """Overwrite an in-flight assistant message's content.

        Only assistant messages are writable, and only until usage has
        been recorded on them; after that the reply is complete.

        Raises:
            NotFound: If the message no longer exists.
            ValueError: If the message is a user message or a completed reply.
        """
        async with self._db.execute(
            "SELECT role, output_tokens FROM messages WHERE id = ?", (message_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise NotFound("Message", message_id)
        if row["role"] != MessageRole.ASSISTANT.value:
            raise ValueError(f"Message {message_id} is not an assistant message")
        if row["output_tokens"] is not None:
            raise ValueError(f"Message {message_id} is complete and cannot be changed")

        cursor = await self._db.execute(
            "UPDATE messages SET content = ? WHERE id = ? AND role = ?"
            " AND output_tokens IS NULL",
            (content, message_id, MessageRole.ASSISTANT.value),
        )
        await self._db.commit()
        if cursor.rowcount == 0:
            raise NotFound("Message", message_id)

    @_wrap_db_errors
    async def update_message_usage(
        self, message_id: int, usage: TokenUsage, model_id: str,
    ) -> None:
        """Record token counts and the producing model on a message."""
        await self._db.execute(
            "UPDATE messages SET input_tokens = ?, output_tokens = ?, model_id = ?"
            " WHERE id = ?",
            (usage.prompt_tokens, usage.completion_tokens, model_id, message_id),
        )
        await self._db.commit()

    @_wrap_db_errors
    async def reload_message(self, message_id: int) -> Message:
        """Re-read a message from the database.

        Raises:
            NotFound: If the message no longer exists.
        """
        async with self._db.execute(
            "SELECT * FROM messages WHERE id = ?", (message_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise NotFound("Message", message_id)
        return self._row_to_message(row)

    async def get_message(self, message_id: int) -> Message | None:
        """Fetch a message by id, or None if it doesn't exist."""
        try:
            return await self.reload_message(message_id)
        except NotFound:
            return None

    @_wrap_db_errors
    async def list_messages(self, conversation_id: str) -> list[Message]:
        """All messages of a conversation in display order."""
        async with self._db.execute(
            "SELECT * FROM messages WHERE conversation_id = ?"
            " ORDER BY created_at, id",
            (conversation_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    @_wrap_db_errors
    async def first_user_message(self, conversation_id: str) -> Message | None:
        """The earliest user-authored message, if any."""
        async with self._db.execute(
            "SELECT * FROM messages WHERE conversation_id = ? AND role = ?"
            " ORDER BY created_at, id LIMIT 1",
            (conversation_id, MessageRole.USER.value),
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_message(row) if row else None

    @_wrap_db_errors
    async def find_last_assistant_message(
        self, conversation_id: str, *, reply_to: int | None = None,
    ) -> Message | None:
        """The latest assistant message, optionally the reply to a given trigger."""
        sql = "SELECT * FROM messages WHERE conversation_id = ? AND role = ?"
        params: list[object] = [conversation_id, MessageRole.ASSISTANT.value]
        if reply_to is not None:
            sql += " AND reply_to = ?"
            params.append(reply_to)
        sql += " ORDER BY created_at DESC, id DESC LIMIT 1"

        async with self._db.execute(sql, params) as cursor:
            row = await cursor.fetchone()
        return self._row_to_message(row) if row else None

    # ── Row conversion ────────────────────────────────────────

    @staticmethod
    def _row_to_conversation(row: aiosqlite.Row) -> Conversation:
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> Message:
        return Message(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            content=row["content"],
            created_at=datetime.fromisoformat(row["created_at"]),
            reply_to=row["reply_to"],
            model_id=row["model_id"],
            input_tokens=row["input_tokens"],
            output_tokens=row["output_tokens"],
        )
