"""Broadcast schemas for live viewer updates.

A StreamUpdate is one named DOM-style operation (append, update,
replace, ...) addressed to a stream and a target region.
"""

from __future__ import annotations

import time
from enum import StrEnum

from pydantic import BaseModel, Field


class BroadcastAction(StrEnum):
    """Operations a viewer applies to a named target region."""

    APPEND = "append"
    PREPEND = "prepend"
    UPDATE = "update"
    REPLACE = "replace"
    REMOVE = "remove"


class StreamUpdate(BaseModel):
    """A single update pushed to every subscriber of a stream."""

    stream: str = Field(description="Stream key (e.g. 'conversation_<id>')")
    action: BroadcastAction = Field(description="Operation to apply")
    target: str = Field(description="Target region name")
    html: str = Field(default="", description="Rendered fragment or escaped content")
    sequence: int = Field(ge=1, description="Per-stream emission order")
    timestamp: float = Field(
        default_factory=time.time,
        description="Unix timestamp when the update was emitted",
    )
