"""Tests for conversation persistence.

Covers database initialization, ConversationStore CRUD operations,
title derivation, sidebar notifications, and export formatters.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from chatstream.broadcast.broadcaster import (
    SIDEBAR_TARGET,
    StreamBroadcaster,
    conversation_stream,
    sidebar_item_target,
    user_stream,
)
from chatstream.errors import NotFound, PersistenceError
from chatstream.persistence.database import close_db, init_db
from chatstream.persistence.export import export_json, export_markdown
from chatstream.persistence.store import (
    FALLBACK_TITLE,
    ConversationStore,
    truncate_title,
)
from chatstream.schemas.broadcast import BroadcastAction
from chatstream.schemas.chat import Conversation, Message, MessageRole, TokenUsage


async def _open_store(tmp_path, broadcaster: StreamBroadcaster | None = None):
    db = await init_db(str(tmp_path / "chats.db"))
    return db, ConversationStore(db, broadcaster)


# ── Database Initialization Tests ─────────────────────────────────


@pytest.mark.asyncio
async def test_init_db_creates_tables(tmp_path):
    """init_db creates the conversations and messages tables."""
    db = await init_db(str(tmp_path / "test.db"))

    async with db.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
    ) as cursor:
        tables = [row[0] for row in await cursor.fetchall()]

    assert "conversations" in tables
    assert "messages" in tables

    await close_db(db)


@pytest.mark.asyncio
async def test_init_db_wal_mode_and_foreign_keys(tmp_path):
    db = await init_db(str(tmp_path / "test.db"))

    async with db.execute("PRAGMA journal_mode") as cursor:
        assert (await cursor.fetchone())[0] == "wal"
    async with db.execute("PRAGMA foreign_keys") as cursor:
        assert (await cursor.fetchone())[0] == 1

    await close_db(db)


@pytest.mark.asyncio
async def test_init_db_creates_parent_dirs(tmp_path):
    db_path = tmp_path / "nested" / "deeper" / "chats.db"
    db = await init_db(str(db_path))
    assert db_path.parent.exists()
    await close_db(db)


@pytest.mark.asyncio
async def test_init_db_is_idempotent(tmp_path):
    db_path = str(tmp_path / "test.db")
    await close_db(await init_db(db_path))
    db = await init_db(db_path)
    await close_db(db)


# ── Conversations ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_and_get_conversation(tmp_path):
    db, store = await _open_store(tmp_path)

    created = await store.create_conversation("alice")
    fetched = await store.get_conversation(created.id)

    assert fetched == created
    assert fetched.user_id == "alice"
    assert fetched.title is None
    assert fetched.created_at.tzinfo is not None

    await close_db(db)


@pytest.mark.asyncio
async def test_create_conversation_requires_owner(tmp_path):
    db, store = await _open_store(tmp_path)

    with pytest.raises(ValueError, match="owner"):
        await store.create_conversation("")

    await close_db(db)


@pytest.mark.asyncio
async def test_get_missing_conversation_raises_not_found(tmp_path):
    db, store = await _open_store(tmp_path)

    with pytest.raises(NotFound, match="Conversation not found: nope"):
        await store.get_conversation("nope")

    await close_db(db)


@pytest.mark.asyncio
async def test_list_conversations_most_recent_first(tmp_path):
    db, store = await _open_store(tmp_path)

    older = await store.create_conversation("alice", "Older")
    newer = await store.create_conversation("alice", "Newer")
    await store.create_conversation("bob", "Not mine")
    await store.create_message(older.id, MessageRole.USER, "bump")

    summaries = await store.list_conversations("alice")

    assert [s.id for s in summaries] == [older.id, newer.id]
    assert summaries[0].message_count == 1
    assert summaries[1].message_count == 0

    await close_db(db)


@pytest.mark.asyncio
async def test_delete_conversation_cascades_messages(tmp_path):
    db, store = await _open_store(tmp_path)

    conversation = await store.create_conversation("alice")
    message = await store.create_message(conversation.id, MessageRole.USER, "Hello")

    assert await store.delete_conversation(conversation.id) is True
    assert await store.get_message(message.id) is None
    with pytest.raises(NotFound):
        await store.get_conversation(conversation.id)

    await close_db(db)


@pytest.mark.asyncio
async def test_delete_missing_conversation_returns_false(tmp_path):
    db, store = await _open_store(tmp_path)
    assert await store.delete_conversation("nope") is False
    await close_db(db)


# ── Sidebar notifications ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_conversation_prepends_sidebar_item(tmp_path):
    broadcaster = StreamBroadcaster()
    queue = broadcaster.subscribe(user_stream("alice"))
    db, store = await _open_store(tmp_path, broadcaster)

    conversation = await store.create_conversation("alice")

    update = queue.get_nowait()
    assert update.action == BroadcastAction.PREPEND
    assert update.target == SIDEBAR_TARGET
    assert sidebar_item_target(conversation.id) in update.html
    assert FALLBACK_TITLE in update.html

    await close_db(db)


@pytest.mark.asyncio
async def test_delete_conversation_removes_sidebar_item(tmp_path):
    broadcaster = StreamBroadcaster()
    db, store = await _open_store(tmp_path, broadcaster)
    conversation = await store.create_conversation("alice")

    queue = broadcaster.subscribe(user_stream("alice"))
    await store.delete_conversation(conversation.id)

    update = queue.get_nowait()
    assert update.action == BroadcastAction.REMOVE
    assert update.target == sidebar_item_target(conversation.id)

    await close_db(db)


@pytest.mark.asyncio
async def test_delete_conversation_resets_its_sequence(tmp_path):
    broadcaster = StreamBroadcaster()
    db, store = await _open_store(tmp_path, broadcaster)
    conversation = await store.create_conversation("alice")
    stream = conversation_stream(conversation.id)

    await broadcaster.update(stream, "t", "1")
    await broadcaster.update(stream, "t", "2")
    await store.delete_conversation(conversation.id)

    assert (await broadcaster.update(stream, "t", "3")).sequence == 1

    await close_db(db)


# ── Titles ────────────────────────────────────────────────────────


def test_truncate_title_short_text_unchanged():
    assert truncate_title("Hello") == "Hello"
    assert truncate_title("x" * 50) == "x" * 50


def test_truncate_title_long_text():
    result = truncate_title("x" * 60)
    assert len(result) == 50
    assert result == "x" * 47 + "..."


@pytest.mark.asyncio
async def test_display_title_fallbacks(tmp_path):
    db, store = await _open_store(tmp_path)

    conversation = await store.create_conversation("alice")
    assert await store.display_title(conversation) == FALLBACK_TITLE

    await store.create_message(conversation.id, MessageRole.USER, "q" * 80)
    assert await store.display_title(conversation) == "q" * 47 + "..."

    titled = await store.create_conversation("alice", "Explicit")
    assert await store.display_title(titled) == "Explicit"

    await close_db(db)


@pytest.mark.asyncio
async def test_derive_title_from_first_user_message(tmp_path):
    db, store = await _open_store(tmp_path)

    conversation = await store.create_conversation("alice")
    message = await store.create_message(
        conversation.id, MessageRole.USER, "  How do I bake sourdough bread at home without a starter?  ",
    )
    updated = await store.derive_title_from_first_message(conversation, message)

    assert updated.title == "How do I bake sourdough bread at home without a..."
    assert len(updated.title) == 50

    await close_db(db)


@pytest.mark.asyncio
async def test_derive_title_is_noop_when_titled_or_not_user(tmp_path):
    db, store = await _open_store(tmp_path)

    titled = await store.create_conversation("alice", "Keep me")
    message = await store.create_message(titled.id, MessageRole.USER, "Other")
    assert (await store.derive_title_from_first_message(titled, message)).title == "Keep me"

    untitled = await store.create_conversation("alice")
    reply = await store.create_message(untitled.id, MessageRole.ASSISTANT, "Hi")
    assert (await store.derive_title_from_first_message(untitled, reply)).title is None

    blank = await store.create_message(untitled.id, MessageRole.USER, "   ")
    assert (await store.derive_title_from_first_message(untitled, blank)).title is None

    await close_db(db)


@pytest.mark.asyncio
async def test_derive_title_first_writer_wins(tmp_path):
    db, store = await _open_store(tmp_path)

    conversation = await store.create_conversation("alice")
    first = await store.create_message(conversation.id, MessageRole.USER, "First")
    second = await store.create_message(conversation.id, MessageRole.USER, "Second")

    # Both callers hold the stale, untitled snapshot
    await store.derive_title_from_first_message(conversation, first)
    result = await store.derive_title_from_first_message(conversation, second)

    assert result.title == "First"

    await close_db(db)


@pytest.mark.asyncio
async def test_derive_title_rejects_foreign_message(tmp_path):
    db, store = await _open_store(tmp_path)

    a = await store.create_conversation("alice")
    b = await store.create_conversation("alice")
    message = await store.create_message(b.id, MessageRole.USER, "Hi")

    with pytest.raises(ValueError, match="does not belong"):
        await store.derive_title_from_first_message(a, message)

    await close_db(db)


# ── Messages ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_message_bumps_updated_at(tmp_path):
    db, store = await _open_store(tmp_path)

    conversation = await store.create_conversation("alice")
    await store.create_message(conversation.id, MessageRole.USER, "Hello")
    refreshed = await store.get_conversation(conversation.id)

    assert refreshed.updated_at >= conversation.updated_at

    await close_db(db)


@pytest.mark.asyncio
async def test_list_messages_in_creation_order(tmp_path):
    db, store = await _open_store(tmp_path)

    conversation = await store.create_conversation("alice")
    for text in ("one", "two", "three"):
        await store.create_message(conversation.id, MessageRole.USER, text)

    messages = await store.list_messages(conversation.id)
    assert [m.content for m in messages] == ["one", "two", "three"]

    await close_db(db)


@pytest.mark.asyncio
async def test_update_content_and_usage(tmp_path):
    db, store = await _open_store(tmp_path)

    conversation = await store.create_conversation("alice")
    message = await store.create_message(conversation.id, MessageRole.ASSISTANT, "")
    assert message.output_tokens is None

    await store.update_message_content(message.id, "Hi there")
    await store.update_message_usage(
        message.id, TokenUsage(prompt_tokens=12, completion_tokens=2), "gpt-4o-mini",
    )
    reloaded = await store.reload_message(message.id)

    assert reloaded.content == "Hi there"
    assert reloaded.input_tokens == 12
    assert reloaded.output_tokens == 2
    assert reloaded.model_id == "gpt-4o-mini"

    await close_db(db)


@pytest.mark.asyncio
async def test_update_missing_message_raises_not_found(tmp_path):
    db, store = await _open_store(tmp_path)

    with pytest.raises(NotFound):
        await store.update_message_content(999, "x")
    with pytest.raises(NotFound):
        await store.reload_message(999)
    assert await store.get_message(999) is None

    await close_db(db)


@pytest.mark.asyncio
async def test_user_message_content_is_read_only(tmp_path):
    db, store = await _open_store(tmp_path)

    conversation = await store.create_conversation("alice")
    question = await store.create_message(conversation.id, MessageRole.USER, "Hello")

    with pytest.raises(ValueError, match="not an assistant message"):
        await store.update_message_content(question.id, "tampered")
    assert (await store.reload_message(question.id)).content == "Hello"

    await close_db(db)


@pytest.mark.asyncio
async def test_completed_reply_is_read_only(tmp_path):
    db, store = await _open_store(tmp_path)

    conversation = await store.create_conversation("alice")
    reply = await store.create_message(conversation.id, MessageRole.ASSISTANT, "")
    await store.update_message_content(reply.id, "Partial")
    await store.update_message_content(reply.id, "Sorry, I encountered an error: boom")
    await store.update_message_usage(
        reply.id, TokenUsage(prompt_tokens=3, completion_tokens=1), "gpt-4o-mini",
    )

    with pytest.raises(ValueError, match="complete"):
        await store.update_message_content(reply.id, "rewritten")
    reloaded = await store.reload_message(reply.id)
    assert reloaded.content == "Sorry, I encountered an error: boom"

    await close_db(db)


@pytest.mark.asyncio
async def test_find_last_assistant_message_by_trigger(tmp_path):
    db, store = await _open_store(tmp_path)

    conversation = await store.create_conversation("alice")
    q1 = await store.create_message(conversation.id, MessageRole.USER, "Q1")
    a1 = await store.create_message(
        conversation.id, MessageRole.ASSISTANT, "A1", reply_to=q1.id,
    )
    q2 = await store.create_message(conversation.id, MessageRole.USER, "Q2")

    assert (await store.find_last_assistant_message(conversation.id)).id == a1.id
    assert (await store.find_last_assistant_message(conversation.id, reply_to=q1.id)).id == a1.id
    assert await store.find_last_assistant_message(conversation.id, reply_to=q2.id) is None

    await close_db(db)


@pytest.mark.asyncio
async def test_database_errors_become_persistence_errors(tmp_path):
    db, store = await _open_store(tmp_path)

    # Foreign key violation: the conversation does not exist
    with pytest.raises(PersistenceError, match="create_message failed"):
        await store.create_message("missing", MessageRole.USER, "Hello")

    await close_db(db)


# ── Export ────────────────────────────────────────────────────────


def _make_transcript() -> tuple[Conversation, list[Message]]:
    ts = datetime(2026, 2, 16, 10, 0, 0, tzinfo=UTC)
    conversation = Conversation(
        id="abc123", user_id="alice", title=None, created_at=ts, updated_at=ts,
    )
    messages = [
        Message(
            id=1, conversation_id="abc123", role=MessageRole.USER,
            content="Hello", created_at=ts,
        ),
        Message(
            id=2, conversation_id="abc123", role=MessageRole.ASSISTANT,
            content="Hi there", created_at=ts, reply_to=1,
            model_id="gpt-4o-mini", input_tokens=12, output_tokens=2,
        ),
    ]
    return conversation, messages


def test_export_json():
    conversation, messages = _make_transcript()
    data = json.loads(export_json(conversation, messages, "Hello"))

    assert data["display_title"] == "Hello"
    assert data["conversation"]["id"] == "abc123"
    assert [m["content"] for m in data["messages"]] == ["Hello", "Hi there"]
    assert data["messages"][1]["reply_to"] == 1


def test_export_markdown():
    conversation, messages = _make_transcript()
    md = export_markdown(conversation, messages, "Hello")

    assert md.startswith("# Hello")
    assert "- **Owner:** alice" in md
    assert "## User · 2026-02-16 10:00:00" in md
    assert "## Assistant · 2026-02-16 10:00:00" in md
    assert "*gpt-4o-mini: 12 in / 2 out*" in md
    assert "**Total Tokens:** 12 in / 2 out" in md
