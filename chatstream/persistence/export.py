"""Conversation export formatters.

Provides JSON and Markdown export functions for a conversation and its
messages.
"""

from __future__ import annotations

import json

from chatstream.schemas.chat import Conversation, Message, MessageRole


def export_json(conversation: Conversation, messages: list[Message], title: str) -> str:
    """Export a conversation as a formatted JSON string.

    Returns:
        Pretty-printed JSON with the conversation record, its display
        title, and all messages in order.
    """
    payload = {
        "conversation": conversation.model_dump(mode="json"),
        "display_title": title,
        "messages": [m.model_dump(mode="json") for m in messages],
    }
    return json.dumps(payload, indent=2)


def export_markdown(conversation: Conversation, messages: list[Message], title: str) -> str:
    """Export a conversation as a human-readable Markdown transcript.

    Returns:
        Markdown-formatted string.
    """
    lines: list[str] = []

    lines.append(f"# {title}")
    lines.append("")
    lines.append(f"- **Conversation:** {conversation.id}")
    lines.append(f"- **Owner:** {conversation.user_id}")
    lines.append(f"- **Created:** {conversation.created_at.isoformat()}")
    lines.append(f"- **Last Activity:** {conversation.updated_at.isoformat()}")
    lines.append(f"- **Messages:** {len(messages)}")
    lines.append("")

    total_in = 0
    total_out = 0
    for message in messages:
        speaker = "User" if message.role == MessageRole.USER else "Assistant"
        lines.append(f"## {speaker} · {message.created_at.strftime('%Y-%m-%d %H:%M:%S')}")
        lines.append("")
        lines.append(message.content)
        lines.append("")
        if message.input_tokens is not None or message.output_tokens is not None:
            lines.append(
                f"*{message.model_id or 'unknown model'}: "
                f"{message.input_tokens or 0:,} in / {message.output_tokens or 0:,} out*"
            )
            lines.append("")
            total_in += message.input_tokens or 0
            total_out += message.output_tokens or 0

    if total_in or total_out:
        lines.append("---")
        lines.append("")
        lines.append(f"**Total Tokens:** {total_in:,} in / {total_out:,} out")
        lines.append("")

    return "\n".join(lines)
