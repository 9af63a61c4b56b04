"""HTML fragments pushed to live viewers.

Every piece of user or model text is HTML-escaped before it is placed
in a fragment. Element ids match the target names used by the
broadcaster, so a fragment can later be updated or replaced in place.
"""

from __future__ import annotations

from html import escape

from chatstream.broadcast.broadcaster import (
    TYPING_TARGET,
    content_target,
    message_target,
    sidebar_item_target,
)
from chatstream.schemas.chat import Conversation, Message


def render_content(text: str) -> str:
    """Escaped message text, as carried by content updates."""
    return escape(text)


def render_message(message: Message) -> str:
    """A complete message bubble, including token metadata when known."""
    meta = ""
    if message.output_tokens is not None:
        meta = (
            f'<div class="message-meta">'
            f"{escape(message.model_id or 'model')} · "
            f"{message.input_tokens or 0} in / {message.output_tokens} out"
            f"</div>"
        )
    return (
        f'<div id="{message_target(message.id)}" class="message message-{message.role}"'
        f' data-role="{message.role}">'
        f'<div id="{content_target(message.id)}" class="message-content" aria-live="polite">'
        f"{render_content(message.content)}"
        f"</div>{meta}</div>"
    )


def render_typing_indicator(visible: bool) -> str:
    """The typing indicator region, shown or hidden."""
    if not visible:
        return f'<div id="{TYPING_TARGET}" class="typing-indicator hidden"></div>'
    return (
        f'<div id="{TYPING_TARGET}" class="typing-indicator" aria-label="Assistant is typing">'
        '<span class="dot"></span><span class="dot"></span><span class="dot"></span>'
        "</div>"
    )


def render_sidebar_item(conversation: Conversation, title: str) -> str:
    """One conversation entry in the owner's sidebar."""
    return (
        f'<a id="{sidebar_item_target(conversation.id)}" class="sidebar-chat"'
        f' href="/conversations/{conversation.id}">{escape(title)}</a>'
    )
