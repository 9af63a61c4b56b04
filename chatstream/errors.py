"""Error taxonomy for completion runs.

NotFound aborts a run before anything is written. ModelCallError is
recovered inside the run and shown to viewers as an assistant message.
PersistenceError is logged and never rendered as a chat message.
"""

from __future__ import annotations


class ChatStreamError(Exception):
    """Base class for all chatstream errors."""


class NotFound(ChatStreamError):
    """A referenced conversation or message does not exist."""

    def __init__(self, kind: str, identifier: object) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class ModelCallError(ChatStreamError, RuntimeError):
    """The language-model call failed (network, rate limit, bad stream)."""


class PersistenceError(ChatStreamError):
    """Reading or writing the conversation database failed."""
