"""FastAPI WebSocket server for live conversation updates.

Broadcasts stream updates over WebSocket to every connected viewer of a
conversation (and sidebar updates to the owning user), and provides
REST endpoints to open conversations, post messages, and export
transcripts. Posting a message stores it and hands the reply off to the
dispatch queue; the answer arrives over the WebSocket.

Requires the 'server' optional dependency group:
    pip install chatstream[server]
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from chatstream import __version__
from chatstream.broadcast.broadcaster import (
    StreamBroadcaster,
    conversation_stream,
    user_stream,
)
from chatstream.errors import NotFound
from chatstream.persistence.export import export_json, export_markdown
from chatstream.providers.registry import load_chat_config
from chatstream.runtime import ChatRuntime, open_runtime
from chatstream.schemas.api import (
    ConversationDetail,
    CreateConversationRequest,
    DeleteResponse,
    PostMessageRequest,
)
from chatstream.schemas.broadcast import StreamUpdate
from chatstream.schemas.chat import Conversation, ConversationSummary, Message, MessageRole

logger = logging.getLogger(__name__)

RuntimeFactory = Callable[[], Awaitable[ChatRuntime]]

# WebSocket close codes for rejected subscriptions
_CLOSE_FORBIDDEN = 4403
_CLOSE_NOT_FOUND = 4404


async def _default_runtime() -> ChatRuntime:
    return await open_runtime(load_chat_config())


def get_runtime(request: Request) -> ChatRuntime:
    """Return the ChatRuntime attached to the running app."""
    return request.app.state.runtime


async def _owned_conversation(
    runtime: ChatRuntime, conversation_id: str, user_id: str,
) -> Conversation:
    """Fetch a conversation, hiding other users' conversations as 404."""
    try:
        conversation = await runtime.store.get_conversation(conversation_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Conversation not found") from None
    if conversation.user_id != user_id:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


async def _pump(ws: WebSocket, queue: asyncio.Queue[StreamUpdate]) -> None:
    """Forward queued updates to one WebSocket client in order."""
    while True:
        update = await queue.get()
        await ws.send_text(update.model_dump_json())


async def _serve_stream(ws: WebSocket, broadcaster: StreamBroadcaster, stream: str) -> None:
    """Accept a socket and relay one stream to it until it disconnects."""
    await ws.accept()
    queue = broadcaster.subscribe(stream)
    sender = asyncio.create_task(_pump(ws, queue))
    logger.info("Viewer connected to %s (%d total)", stream, broadcaster.subscriber_count(stream))

    try:
        # Keep connection alive, listen for client messages
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        broadcaster.unsubscribe(stream, queue)
        logger.info(
            "Viewer disconnected from %s (%d remaining)",
            stream, broadcaster.subscriber_count(stream),
        )


def create_app(runtime_factory: RuntimeFactory | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        runtime_factory: Coroutine function building the ChatRuntime at
            startup. Defaults to one built from defaults.toml.
    """
    factory = runtime_factory or _default_runtime

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.runtime = await factory()
        try:
            yield
        finally:
            await app.state.runtime.close(cancel=True)

    app = FastAPI(
        title="chatstream",
        description="Streaming chat completions with live viewer updates",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── WebSocket ────────────────────────────────────────────────

    @app.websocket("/ws/conversations/{conversation_id}")
    async def conversation_socket(ws: WebSocket, conversation_id: str, user_id: str = "") -> None:
        """Stream message and typing updates of one conversation to its owner."""
        runtime: ChatRuntime = ws.app.state.runtime
        try:
            conversation = await runtime.store.get_conversation(conversation_id)
        except NotFound:
            await ws.close(code=_CLOSE_NOT_FOUND)
            return
        if conversation.user_id != user_id:
            await ws.close(code=_CLOSE_FORBIDDEN)
            return
        await _serve_stream(ws, runtime.broadcaster, conversation_stream(conversation_id))

    @app.websocket("/ws/users/{user_id}/chats")
    async def sidebar_socket(ws: WebSocket, user_id: str) -> None:
        """Stream sidebar additions and removals for one user."""
        runtime: ChatRuntime = ws.app.state.runtime
        await _serve_stream(ws, runtime.broadcaster, user_stream(user_id))

    # ── REST API ─────────────────────────────────────────────────

    @app.get("/api/conversations")
    async def list_conversations(
        user_id: str, limit: int = 50, runtime: ChatRuntime = Depends(get_runtime),
    ) -> list[ConversationSummary]:
        """List a user's conversations, most recent first."""
        return await runtime.store.list_conversations(user_id, limit=limit)

    @app.post("/api/conversations", status_code=201)
    async def create_conversation(
        body: CreateConversationRequest, runtime: ChatRuntime = Depends(get_runtime),
    ) -> Conversation:
        """Open a new conversation."""
        return await runtime.store.create_conversation(body.user_id, body.title)

    @app.get("/api/conversations/{conversation_id}")
    async def get_conversation(
        conversation_id: str, user_id: str, runtime: ChatRuntime = Depends(get_runtime),
    ) -> ConversationDetail:
        """Return a conversation with its messages in display order."""
        conversation = await _owned_conversation(runtime, conversation_id, user_id)
        return ConversationDetail(
            conversation=conversation,
            display_title=await runtime.store.display_title(conversation),
            messages=await runtime.store.list_messages(conversation.id),
        )

    @app.delete("/api/conversations/{conversation_id}")
    async def delete_conversation(
        conversation_id: str, user_id: str, runtime: ChatRuntime = Depends(get_runtime),
    ) -> DeleteResponse:
        """Delete a conversation and point at the owner's next most recent one."""
        await _owned_conversation(runtime, conversation_id, user_id)
        await runtime.store.delete_conversation(conversation_id)
        remaining = await runtime.store.list_conversations(user_id, limit=1)
        return DeleteResponse(
            next_conversation_id=remaining[0].id if remaining else None,
        )

    @app.post("/api/conversations/{conversation_id}/messages", status_code=202)
    async def post_message(
        conversation_id: str,
        body: PostMessageRequest,
        runtime: ChatRuntime = Depends(get_runtime),
    ) -> Message:
        """Store a user message and schedule the assistant's reply."""
        conversation = await _owned_conversation(runtime, conversation_id, body.user_id)
        if not body.content.strip():
            raise HTTPException(status_code=422, detail="Message cannot be empty")

        message = await runtime.store.create_message(
            conversation.id, MessageRole.USER, body.content,
        )
        await runtime.store.derive_title_from_first_message(conversation, message)
        runtime.dispatcher.enqueue(conversation.id, message.id)
        return message

    @app.get("/api/conversations/{conversation_id}/export")
    async def export_conversation(
        conversation_id: str,
        user_id: str,
        format: str = "json",
        runtime: ChatRuntime = Depends(get_runtime),
    ) -> PlainTextResponse:
        """Export a transcript as JSON or Markdown."""
        conversation = await _owned_conversation(runtime, conversation_id, user_id)
        title = await runtime.store.display_title(conversation)
        messages = await runtime.store.list_messages(conversation.id)
        if format == "json":
            return PlainTextResponse(
                export_json(conversation, messages, title), media_type="application/json",
            )
        if format == "markdown":
            return PlainTextResponse(
                export_markdown(conversation, messages, title), media_type="text/markdown",
            )
        raise HTTPException(status_code=400, detail="Format must be json or markdown")

    return app
