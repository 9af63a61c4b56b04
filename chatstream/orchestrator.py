"""Completion orchestrator for one assistant reply.

Drives a single response cycle: resolves the conversation, shows the
typing indicator, streams the model's answer into an assistant message
while broadcasting every step to live viewers, persists the result,
and turns failures into a visible assistant message.

Per run the message broadcasts are strictly ordered:
append (at most once) -> update (zero or more) -> terminal event
(exactly once). The typing indicator is always hidden when the run ends.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from chatstream.broadcast.broadcaster import (
    MESSAGES_TARGET,
    StreamBroadcaster,
    content_target,
    conversation_stream,
    message_target,
)
from chatstream.broadcast.render import render_content, render_message
from chatstream.errors import ModelCallError, NotFound, PersistenceError
from chatstream.persistence.store import ConversationStore
from chatstream.providers.base import ModelProvider
from chatstream.schemas.chat import Conversation, Message, MessageRole
from chatstream.schemas.config import ChatConfig
from chatstream.schemas.streaming import CompletionResult, StreamChunk
from chatstream.typing_indicator import TypingIndicator

logger = logging.getLogger(__name__)


@dataclass
class _RunState:
    """Mutable state owned by a single run."""

    conversation: Conversation
    stream: str
    reply_to: int | None
    parts: list[str] = field(default_factory=list)
    message: Message | None = None
    finished: bool = False

    @property
    def accumulated(self) -> str:
        return "".join(self.parts)


class CompletionOrchestrator:
    """Runs response cycles against a model provider.

    One orchestrator can serve many concurrent runs; all per-run state
    lives in a _RunState created by run().
    """

    def __init__(
        self,
        store: ConversationStore,
        provider: ModelProvider,
        broadcaster: StreamBroadcaster,
        config: ChatConfig,
        typing: TypingIndicator | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._broadcaster = broadcaster
        self._config = config
        self._typing = typing or TypingIndicator(broadcaster)

    async def run(
        self, conversation_id: str, trigger_message_id: int | None = None,
    ) -> Message | None:
        """Produce one assistant reply for a conversation.

        Args:
            conversation_id: Conversation to answer in.
            trigger_message_id: The user message that prompted this run.
                Optional; a missing or foreign id is tolerated.

        Returns:
            The final assistant message (the reply or the error notice),
            or None when persistence failed and nothing could be stored.

        Raises:
            NotFound: If the conversation does not exist. Nothing is
                written or broadcast in that case.
        """
        conversation = await self._store.get_conversation(conversation_id)
        reply_to = await self._resolve_trigger(conversation, trigger_message_id)

        if reply_to is not None:
            existing = await self._store.find_last_assistant_message(
                conversation.id, reply_to=reply_to,
            )
            if existing is not None:
                logger.info(
                    "Message %s already answered by %s; skipping run",
                    reply_to, existing.id,
                )
                return existing

        state = _RunState(
            conversation=conversation,
            stream=conversation_stream(conversation.id),
            reply_to=reply_to,
        )
        logger.info("Starting completion run for conversation %s", conversation.id)

        async with self._typing.composing(conversation.id):
            try:
                history = await self._build_history(conversation.id)

                async def on_chunk(chunk: StreamChunk) -> None:
                    await self._handle_chunk(state, chunk)

                result = await self._provider.complete_streaming(
                    history,
                    self._config.system_prompt,
                    timeout=self._config.timeout,
                    on_chunk=on_chunk,
                )
                if state.message is None:
                    raise ModelCallError("The model returned an empty response")
                return await self._finish(state, result)
            except (PersistenceError, NotFound):
                logger.exception(
                    "Persistence failed during run for conversation %s",
                    conversation.id,
                )
                await self._abandon(state)
                return None
            except Exception as e:
                logger.exception(
                    "Completion failed for conversation %s", conversation.id,
                )
                return await self._fail(state, e)

    # ── Steps ─────────────────────────────────────────────────

    async def _resolve_trigger(
        self, conversation: Conversation, trigger_message_id: int | None,
    ) -> int | None:
        if trigger_message_id is None:
            return None
        trigger = await self._store.get_message(trigger_message_id)
        if trigger is None or trigger.conversation_id != conversation.id:
            logger.warning(
                "Trigger message %s not found in conversation %s; using history only",
                trigger_message_id, conversation.id,
            )
            return None
        return trigger.id

    async def _build_history(self, conversation_id: str) -> list[dict[str, str]]:
        messages = [
            m for m in await self._store.list_messages(conversation_id) if m.content
        ]
        if self._config.history_limit:
            messages = messages[-self._config.history_limit:]
        return [{"role": m.role.value, "content": m.content} for m in messages]

    async def _handle_chunk(self, state: _RunState, chunk: StreamChunk) -> None:
        if not chunk.content:
            return

        state.parts.append(chunk.content)

        if state.message is None:
            await self._typing.set_visible(state.conversation.id, False)
            state.message = await self._store.create_message(
                state.conversation.id,
                MessageRole.ASSISTANT,
                "",
                reply_to=state.reply_to,
            )
            await self._broadcaster.append(
                state.stream, MESSAGES_TARGET, render_message(state.message),
            )

        await self._broadcaster.update(
            state.stream,
            content_target(state.message.id),
            render_content(state.accumulated),
        )

    async def _finish(self, state: _RunState, result: CompletionResult) -> Message:
        message_id = state.message.id
        await self._store.update_message_content(message_id, state.accumulated)
        await self._store.update_message_usage(
            message_id, result.token_usage, result.model or self._provider.model_id,
        )
        message = await self._store.reload_message(message_id)
        state.message = message

        await self._complete(state, message)
        logger.info(
            "Completed reply %s in conversation %s (%d chars, %d tokens out)",
            message.id, state.conversation.id,
            len(message.content), message.output_tokens or 0,
        )
        return message

    async def _fail(self, state: _RunState, error: Exception) -> Message | None:
        """Turn a failed run into a visible assistant message."""
        if state.finished:
            return state.message

        notice = self._config.error_notice.format(error=error)

        if state.message is not None:
            try:
                await self._store.update_message_content(state.message.id, notice)
                message = await self._store.reload_message(state.message.id)
            except (PersistenceError, NotFound):
                logger.exception("Could not store error notice on message %s", state.message.id)
                message = state.message.model_copy(update={"content": notice})
            await self._complete(state, message)
            return message

        try:
            message = await self._store.create_message(
                state.conversation.id,
                MessageRole.ASSISTANT,
                notice,
                reply_to=state.reply_to,
            )
        except (PersistenceError, NotFound):
            logger.exception(
                "Could not store error notice for conversation %s", state.conversation.id,
            )
            return None

        state.message = message
        await self._broadcaster.append(
            state.stream, MESSAGES_TARGET, render_message(message),
        )
        await self._complete(state, message)
        return message

    async def _abandon(self, state: _RunState) -> None:
        """Close a visible bubble after a persistence failure, without storing."""
        if state.message is None or state.finished:
            return
        await self._complete(
            state, state.message.model_copy(update={"content": state.accumulated}),
        )

    async def _complete(self, state: _RunState, message: Message) -> None:
        state.finished = True
        await self._broadcaster.replace(
            state.stream, message_target(message.id), render_message(message),
        )
