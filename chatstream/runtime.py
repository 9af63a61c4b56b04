"""Wiring for a running chatstream process.

Opens the database and builds the broadcaster, store, provider,
orchestrator, and dispatch queue from configuration. Shared by the
HTTP server and the CLI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import aiosqlite

from chatstream.broadcast.broadcaster import StreamBroadcaster
from chatstream.dispatch import DispatchQueue
from chatstream.orchestrator import CompletionOrchestrator
from chatstream.persistence.database import close_db, init_db
from chatstream.persistence.store import ConversationStore
from chatstream.providers.base import ModelProvider
from chatstream.providers.litellm_provider import LiteLLMProvider
from chatstream.providers.registry import load_models, resolve_model
from chatstream.schemas.config import ChatConfig, ModelConfig

logger = logging.getLogger(__name__)


@dataclass
class ChatRuntime:
    """The collaborating components of one chatstream process."""

    config: ChatConfig
    db: aiosqlite.Connection
    broadcaster: StreamBroadcaster
    store: ConversationStore
    provider: ModelProvider
    orchestrator: CompletionOrchestrator
    dispatcher: DispatchQueue

    async def close(self, *, cancel: bool = False) -> None:
        """Drain (or cancel) pending runs, then close the database."""
        await self.dispatcher.shutdown(cancel=cancel)
        await close_db(self.db)


async def open_runtime(
    config: ChatConfig,
    *,
    registry: dict[str, ModelConfig] | None = None,
    provider: ModelProvider | None = None,
) -> ChatRuntime:
    """Build a ChatRuntime from configuration.

    Args:
        config: Chat settings (model key, database path, limits).
        registry: Model registry; loaded from models.toml when omitted.
        provider: Pre-built provider, bypassing registry lookup.

    Raises:
        ValueError: If config.model is not in the registry.
    """
    if provider is None:
        registry = registry if registry is not None else load_models()
        provider = LiteLLMProvider(resolve_model(registry, config.model))

    db = await init_db(config.db_path)
    broadcaster = StreamBroadcaster()
    store = ConversationStore(db, broadcaster)
    orchestrator = CompletionOrchestrator(store, provider, broadcaster, config)
    dispatcher = DispatchQueue(
        orchestrator,
        max_concurrent=config.max_concurrent_runs,
        serialize_per_conversation=config.serialize_per_conversation,
    )
    logger.info("Runtime ready (model=%s, db=%s)", provider.model_id, config.db_path)

    return ChatRuntime(
        config=config,
        db=db,
        broadcaster=broadcaster,
        store=store,
        provider=provider,
        orchestrator=orchestrator,
        dispatcher=dispatcher,
    )
