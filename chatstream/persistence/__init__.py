"""chatstream persistence layer.

Provides SQLite-backed storage for conversations and messages, with
support for listing, export (JSON/Markdown), and cascading deletes.
"""

from chatstream.persistence.database import close_db, init_db
from chatstream.persistence.export import export_json, export_markdown
from chatstream.persistence.store import FALLBACK_TITLE, ConversationStore, truncate_title

__all__ = [
    "FALLBACK_TITLE",
    "ConversationStore",
    "close_db",
    "export_json",
    "export_markdown",
    "init_db",
    "truncate_title",
]
