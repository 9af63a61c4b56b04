"""Tests for the CLI interface.

Covers --version, help output, chats/models/config commands against a
temporary database, and the ask command with a stubbed provider.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import patch

from typer.testing import CliRunner

from chatstream import __version__
from chatstream.cli import app
from chatstream.persistence.database import close_db, init_db
from chatstream.persistence.store import ConversationStore
from chatstream.providers.base import ModelProvider
from chatstream.schemas.chat import MessageRole
from chatstream.schemas.config import ChatConfig, ModelConfig
from chatstream.schemas.streaming import CompletionResult, StreamChunk

# NO_COLOR=1 prevents Rich from injecting ANSI codes inside option names,
# which breaks substring matching in CI (headless, no TTY).
# COLUMNS=200 prevents wrapping that could split a flag across lines.
runner = CliRunner(env={"NO_COLOR": "1", "COLUMNS": "200"})


# ── Factories ──────────────────────────────────────────────────────


def _make_config(tmp_path, **overrides) -> ChatConfig:
    return ChatConfig(db_path=str(tmp_path / "chats.db"), **overrides)


def _seed(config: ChatConfig, user_id: str = "local"):
    """Create one answered conversation and return it."""

    async def _inner():
        db = await init_db(config.db_path)
        store = ConversationStore(db)
        conversation = await store.create_conversation(user_id)
        question = await store.create_message(conversation.id, MessageRole.USER, "Hello")
        await store.derive_title_from_first_message(conversation, question)
        await store.create_message(
            conversation.id, MessageRole.ASSISTANT, "Hi there", reply_to=question.id,
        )
        await close_db(db)
        return conversation

    return asyncio.run(_inner())


def _count_conversations(config: ChatConfig, user_id: str = "local") -> list:
    async def _inner():
        db = await init_db(config.db_path)
        summaries = await ConversationStore(db).list_conversations(user_id)
        await close_db(db)
        return summaries

    return asyncio.run(_inner())


class StubProvider(ModelProvider):
    """Replies with a fixed two-chunk answer."""

    async def complete(self, messages, system, *, timeout=120):
        return CompletionResult(content="Hi there", model=self.model_id)

    async def complete_streaming(self, messages, system, *, timeout=120, on_chunk=None):
        for part in ("Hi", " there"):
            await on_chunk(StreamChunk(content=part))
        return CompletionResult(content="Hi there", model=self.model_id)


# ── Global options ─────────────────────────────────────────────────


class TestGlobalOptions:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"chatstream {__version__}" in result.output

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("serve", "ask", "chats", "models", "config"):
            assert command in result.output


# ── chats ──────────────────────────────────────────────────────────


class TestChatsCommands:
    def test_list_empty(self, tmp_path):
        config = _make_config(tmp_path)
        with patch("chatstream.cli._load_config", return_value=config):
            result = runner.invoke(app, ["chats", "list"])
        assert result.exit_code == 0
        assert "No conversations found" in result.output

    def test_list_shows_titles(self, tmp_path):
        config = _make_config(tmp_path)
        conversation = _seed(config)
        with patch("chatstream.cli._load_config", return_value=config):
            result = runner.invoke(app, ["chats", "list"])
        assert result.exit_code == 0
        assert conversation.id in result.output
        assert "Hello" in result.output

    def test_show_transcript(self, tmp_path):
        config = _make_config(tmp_path)
        conversation = _seed(config)
        with patch("chatstream.cli._load_config", return_value=config):
            result = runner.invoke(app, ["chats", "show", conversation.id])
        assert result.exit_code == 0
        assert "Hello" in result.output
        assert "Hi there" in result.output

    def test_show_missing(self, tmp_path):
        config = _make_config(tmp_path)
        with patch("chatstream.cli._load_config", return_value=config):
            result = runner.invoke(app, ["chats", "show", "nope"])
        assert result.exit_code == 1
        assert "Conversation not found" in result.output

    def test_export_json(self, tmp_path):
        config = _make_config(tmp_path)
        conversation = _seed(config)
        with patch("chatstream.cli._load_config", return_value=config):
            result = runner.invoke(app, ["chats", "export", conversation.id, "--format", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["display_title"] == "Hello"
        assert len(data["messages"]) == 2

    def test_export_markdown(self, tmp_path):
        config = _make_config(tmp_path)
        conversation = _seed(config)
        with patch("chatstream.cli._load_config", return_value=config):
            result = runner.invoke(app, ["chats", "export", conversation.id])
        assert result.exit_code == 0
        assert "# Hello" in result.output

    def test_export_invalid_format(self, tmp_path):
        result = runner.invoke(app, ["chats", "export", "abc", "--format", "pdf"])
        assert result.exit_code == 1
        assert "Invalid format" in result.output

    def test_delete_with_yes(self, tmp_path):
        config = _make_config(tmp_path)
        conversation = _seed(config)
        with patch("chatstream.cli._load_config", return_value=config):
            result = runner.invoke(app, ["chats", "delete", conversation.id, "--yes"])
        assert result.exit_code == 0
        assert "Conversation deleted" in result.output
        assert _count_conversations(config) == []

    def test_delete_cancelled(self, tmp_path):
        config = _make_config(tmp_path)
        conversation = _seed(config)
        with patch("chatstream.cli._load_config", return_value=config):
            result = runner.invoke(app, ["chats", "delete", conversation.id], input="n\n")
        assert "Cancelled" in result.output
        assert len(_count_conversations(config)) == 1


# ── models / config ────────────────────────────────────────────────


class TestModelsAndConfig:
    def test_models_list(self):
        result = runner.invoke(app, ["models", "list"])
        assert result.exit_code == 0
        assert "gpt-4o-mini" in result.output
        assert "(default)" in result.output

    def test_config_show(self, tmp_path):
        config = _make_config(tmp_path, system_prompt="Be brief.")
        with patch("chatstream.cli._load_config", return_value=config):
            result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "Be brief." in result.output
        assert "gpt-4o-mini" in result.output


# ── ask ────────────────────────────────────────────────────────────


class TestAskCommand:
    def _stub(self, model_config: ModelConfig) -> StubProvider:
        return StubProvider(model_config)

    def test_ask_creates_conversation(self, tmp_path):
        config = _make_config(tmp_path)
        with (
            patch("chatstream.cli._load_config", return_value=config),
            patch("chatstream.runtime.LiteLLMProvider", side_effect=self._stub),
        ):
            result = runner.invoke(app, ["ask", "Hello"])

        assert result.exit_code == 0, result.output
        summaries = _count_conversations(config)
        assert len(summaries) == 1
        assert summaries[0].title == "Hello"
        assert summaries[0].message_count == 2
        assert f"chat {summaries[0].id}" in result.output

    def test_ask_continues_conversation(self, tmp_path):
        config = _make_config(tmp_path)
        conversation = _seed(config)
        with (
            patch("chatstream.cli._load_config", return_value=config),
            patch("chatstream.runtime.LiteLLMProvider", side_effect=self._stub),
        ):
            result = runner.invoke(app, ["ask", "Again", "--chat", conversation.id])

        assert result.exit_code == 0, result.output
        summaries = _count_conversations(config)
        assert len(summaries) == 1
        assert summaries[0].message_count == 4

    def test_ask_rejects_other_users_chat(self, tmp_path):
        config = _make_config(tmp_path)
        conversation = _seed(config, user_id="alice")
        with (
            patch("chatstream.cli._load_config", return_value=config),
            patch("chatstream.runtime.LiteLLMProvider", side_effect=self._stub),
        ):
            result = runner.invoke(app, ["ask", "Hi", "--chat", conversation.id])

        assert result.exit_code == 1
        assert "Conversation not found" in result.output

    def test_ask_unknown_model(self, tmp_path):
        config = _make_config(tmp_path)
        with patch("chatstream.cli._load_config", return_value=config):
            result = runner.invoke(app, ["ask", "Hi", "--model", "nope"])

        assert result.exit_code == 1
        assert "Unknown model 'nope'" in result.output

    def test_ask_rejects_blank_message(self):
        result = runner.invoke(app, ["ask", "   "])
        assert result.exit_code == 1
        assert "Message cannot be empty" in result.output
