"""Dispatch queue for completion runs.

Schedules each orchestrator run as its own asyncio task, off the
request path that stored the user message. Runs for different
conversations execute concurrently up to a configured limit. Runs for
the same conversation are serialized unless that is switched off.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from chatstream.errors import NotFound
from chatstream.orchestrator import CompletionOrchestrator

logger = logging.getLogger(__name__)


class DispatchQueue:
    """Runs CompletionOrchestrator.run() in background tasks.

    Usage:
        queue = DispatchQueue(orchestrator, max_concurrent=4)
        queue.enqueue(conversation_id, message_id)
        ...
        await queue.join()
    """

    def __init__(
        self,
        orchestrator: CompletionOrchestrator,
        *,
        max_concurrent: int = 4,
        serialize_per_conversation: bool = True,
    ) -> None:
        self._orchestrator = orchestrator
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._serialize = serialize_per_conversation
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._waiting: dict[str, int] = defaultdict(int)
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of runs scheduled or executing."""
        return len(self._tasks)

    def enqueue(
        self, conversation_id: str, trigger_message_id: int | None = None,
    ) -> asyncio.Task[None]:
        """Schedule one run. Must be called from within a running event loop."""
        loop = asyncio.get_running_loop()
        task = loop.create_task(
            self._execute(conversation_id, trigger_message_id),
            name=f"completion-{conversation_id}-{trigger_message_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(
            "Enqueued run for conversation %s (message %s)",
            conversation_id, trigger_message_id,
        )
        return task

    async def join(self) -> None:
        """Wait until every scheduled run has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, *, cancel: bool = False) -> None:
        """Stop the queue, optionally cancelling in-flight runs."""
        if cancel:
            for task in list(self._tasks):
                task.cancel()
        await self.join()

    async def _execute(
        self, conversation_id: str, trigger_message_id: int | None,
    ) -> None:
        try:
            if self._serialize:
                self._waiting[conversation_id] += 1
                try:
                    async with self._locks[conversation_id], self._semaphore:
                        await self._orchestrator.run(conversation_id, trigger_message_id)
                finally:
                    self._waiting[conversation_id] -= 1
                    if not self._waiting[conversation_id]:
                        del self._waiting[conversation_id]
                        self._locks.pop(conversation_id, None)
            else:
                async with self._semaphore:
                    await self._orchestrator.run(conversation_id, trigger_message_id)
        except NotFound as e:
            logger.error("Dropping run: %s", e)
        except Exception:
            logger.exception(
                "Run for conversation %s (message %s) crashed",
                conversation_id, trigger_message_id,
            )
