"""chatstream CLI — Typer + Rich terminal interface.

Commands: serve, ask, chats, models, config.
"""

from __future__ import annotations

import asyncio
import html
import logging

import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from chatstream import __version__
from chatstream.keys import load_keys_env
from chatstream.providers.registry import load_chat_config, load_models

# Load API keys from ~/.chatstream/keys.env and .env on startup
load_keys_env()

console = Console()

# ── App and sub-apps ─────────────────────────────────────────────

app = typer.Typer(
    name="chatstream",
    help="Streaming LLM chat with live viewer updates.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

chats_app = typer.Typer(
    name="chats",
    help="Browse and manage stored conversations.",
    no_args_is_help=True,
)
app.add_typer(chats_app, name="chats")

models_app = typer.Typer(
    name="models",
    help="Inspect the model registry.",
    no_args_is_help=True,
)
app.add_typer(models_app, name="models")

config_app = typer.Typer(
    name="config",
    help="Show chat configuration.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"chatstream {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Log debug output to the terminal.",
    ),
) -> None:
    """chatstream — streaming LLM chat with live viewer updates."""
    if verbose:
        from rich.logging import RichHandler

        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


# ── Helpers ──────────────────────────────────────────────────────

def _load_registry():
    """Load the model registry, exit on error."""
    try:
        return load_models()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading models:[/red] {e}")
        raise typer.Exit(1) from None


def _load_config():
    """Load chat config, exit on error."""
    try:
        return load_chat_config()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1) from None


def _role_style(role: str) -> str:
    return "bold cyan" if role == "user" else "bold green"


# ── chatstream serve ─────────────────────────────────────────────

@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8430, "--port", "-p", help="Port to serve on"),
) -> None:
    """Start the HTTP + WebSocket chat server.

    Requires: pip install chatstream[server]
    """
    try:
        from chatstream.broadcast.server import create_app
    except ImportError:
        console.print(
            "[red]The server requires extra dependencies.[/red]\n"
            "Install with: [bold]pip install chatstream\\[server][/bold]"
        )
        raise typer.Exit(1) from None

    import uvicorn

    config = _load_config()
    console.print(Panel(
        f"[bold]URL:[/bold] http://{host}:{port}\n"
        f"[bold]Model:[/bold] {config.model}\n"
        f"[bold]Database:[/bold] {config.db_path}",
        title="[bold blue]chatstream server[/bold blue]",
        border_style="blue",
    ))
    uvicorn.run(create_app(), host=host, port=port, log_level="info")


# ── chatstream ask ───────────────────────────────────────────────

@app.command()
def ask(
    text: str = typer.Argument(..., help="Message to send"),
    chat: str = typer.Option(None, "--chat", "-c", help="Continue an existing conversation"),
    user: str = typer.Option("local", "--user", "-u", help="Owner of the conversation"),
    model: str = typer.Option(None, "--model", "-m", help="Model registry key"),
) -> None:
    """Send a message and stream the assistant's reply."""
    from chatstream.broadcast.broadcaster import content_target
    from chatstream.errors import NotFound
    from chatstream.runtime import open_runtime
    from chatstream.schemas.broadcast import BroadcastAction
    from chatstream.schemas.chat import MessageRole

    if not text.strip():
        console.print("[red]Message cannot be empty.[/red]")
        raise typer.Exit(1)

    config = _load_config()
    if model:
        config = config.model_copy(update={"model": model})
    registry = _load_registry()

    async def _ask():
        runtime = await open_runtime(config, registry=registry)
        try:
            if chat:
                conversation = await runtime.store.get_conversation(chat)
                if conversation.user_id != user:
                    raise NotFound("Conversation", chat)
            else:
                conversation = await runtime.store.create_conversation(user)

            message = await runtime.store.create_message(
                conversation.id, MessageRole.USER, text,
            )
            await runtime.store.derive_title_from_first_message(conversation, message)

            with Live(Text("…", style="dim"), console=console, refresh_per_second=12) as live:

                def show(update):
                    if (
                        update.action == BroadcastAction.UPDATE
                        and update.target.startswith(content_target(""))
                    ):
                        live.update(Text(html.unescape(update.html)))

                runtime.broadcaster.add_listener(show)
                try:
                    reply = await runtime.orchestrator.run(conversation.id, message.id)
                finally:
                    runtime.broadcaster.remove_listener(show)
                if reply is not None:
                    live.update(Text(reply.content))
            return conversation, reply
        finally:
            await runtime.close()

    try:
        conversation, reply = asyncio.run(_ask())
    except NotFound as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from None
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    if reply is None:
        console.print("[red]The reply could not be stored.[/red]")
        raise typer.Exit(1)

    tokens = f" · {reply.output_tokens:,} tokens" if reply.output_tokens else ""
    console.print(f"[dim]chat {conversation.id}{tokens}[/dim]")


# ── chatstream chats ─────────────────────────────────────────────

@chats_app.command("list")
def chats_list(
    user: str = typer.Option("local", "--user", "-u", help="Owner of the conversations"),
    limit: int = typer.Option(20, "--limit", "-n", help="Max conversations to show"),
) -> None:
    """Show a user's recent conversations."""
    from chatstream.persistence.database import close_db, init_db
    from chatstream.persistence.store import FALLBACK_TITLE, ConversationStore

    config = _load_config()

    async def _list():
        db = await init_db(config.db_path)
        store = ConversationStore(db)
        summaries = await store.list_conversations(user, limit=limit)
        await close_db(db)
        return summaries

    summaries = asyncio.run(_list())

    if not summaries:
        console.print("[dim]No conversations found.[/dim]")
        return

    table = Table(title=f"Conversations ({len(summaries)} shown)")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", max_width=50)
    table.add_column("Messages", justify="right")
    table.add_column("Updated", style="dim")

    for s in summaries:
        table.add_row(
            s.id,
            s.title or FALLBACK_TITLE,
            str(s.message_count),
            s.updated_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@chats_app.command("show")
def chats_show(
    conversation_id: str = typer.Argument(..., help="Conversation ID"),
) -> None:
    """Show a conversation transcript."""
    from chatstream.errors import NotFound
    from chatstream.persistence.database import close_db, init_db
    from chatstream.persistence.store import ConversationStore

    config = _load_config()

    async def _get():
        db = await init_db(config.db_path)
        try:
            store = ConversationStore(db)
            conversation = await store.get_conversation(conversation_id)
            return (
                conversation,
                await store.display_title(conversation),
                await store.list_messages(conversation_id),
            )
        finally:
            await close_db(db)

    try:
        conversation, title, messages = asyncio.run(_get())
    except NotFound:
        console.print(f"[red]Conversation not found:[/red] {conversation_id}")
        raise typer.Exit(1) from None

    meta = Table(title=f"Conversation: {title}", show_header=False, show_lines=True)
    meta.add_column("Field", style="bold")
    meta.add_column("Value")
    meta.add_row("ID", conversation.id)
    meta.add_row("Owner", conversation.user_id)
    meta.add_row("Created", conversation.created_at.isoformat())
    meta.add_row("Messages", str(len(messages)))
    console.print(meta)

    for m in messages:
        console.print()
        console.print(Text(m.role.value.capitalize(), style=_role_style(m.role.value)))
        console.print(Text(m.content))


@chats_app.command("export")
def chats_export(
    conversation_id: str = typer.Argument(..., help="Conversation ID"),
    fmt: str = typer.Option(
        "markdown", "--format", "-f",
        help="Export format: json or markdown",
    ),
) -> None:
    """Export a conversation as JSON or Markdown."""
    from chatstream.errors import NotFound
    from chatstream.persistence.database import close_db, init_db
    from chatstream.persistence.export import export_json, export_markdown
    from chatstream.persistence.store import ConversationStore

    if fmt not in ("json", "markdown"):
        console.print(f"[red]Invalid format:[/red] '{fmt}'. Choose json or markdown.")
        raise typer.Exit(1)

    config = _load_config()

    async def _get():
        db = await init_db(config.db_path)
        try:
            store = ConversationStore(db)
            conversation = await store.get_conversation(conversation_id)
            return (
                conversation,
                await store.display_title(conversation),
                await store.list_messages(conversation_id),
            )
        finally:
            await close_db(db)

    try:
        conversation, title, messages = asyncio.run(_get())
    except NotFound:
        console.print(f"[red]Conversation not found:[/red] {conversation_id}")
        raise typer.Exit(1) from None

    if fmt == "json":
        console.print(export_json(conversation, messages, title), markup=False)
    else:
        console.print(export_markdown(conversation, messages, title), markup=False)


@chats_app.command("delete")
def chats_delete(
    conversation_id: str = typer.Argument(..., help="Conversation ID"),
    yes: bool = typer.Option(
        False, "--yes", "-y",
        help="Skip confirmation prompt",
    ),
) -> None:
    """Delete a conversation and all of its messages."""
    if not yes:
        confirm = typer.confirm(
            f"Delete conversation {conversation_id}? This cannot be undone."
        )
        if not confirm:
            console.print("[dim]Cancelled.[/dim]")
            return

    from chatstream.persistence.database import close_db, init_db
    from chatstream.persistence.store import ConversationStore

    config = _load_config()

    async def _delete():
        db = await init_db(config.db_path)
        store = ConversationStore(db)
        deleted = await store.delete_conversation(conversation_id)
        await close_db(db)
        return deleted

    deleted = asyncio.run(_delete())

    if deleted:
        console.print(f"[green]Conversation deleted:[/green] {conversation_id}")
    else:
        console.print(f"[red]Conversation not found:[/red] {conversation_id}")


# ── chatstream models ────────────────────────────────────────────

@models_app.command("list")
def models_list() -> None:
    """Show all registered models as a table."""
    registry = _load_registry()
    config = _load_config()

    table = Table(title="Registered Models", show_lines=True)
    table.add_column("Key", style="bold cyan")
    table.add_column("Display Name")
    table.add_column("Provider", style="dim")
    table.add_column("Context", justify="right")
    table.add_column("Input $/M", justify="right")
    table.add_column("Output $/M", justify="right")

    for key, cfg in sorted(registry.items()):
        marker = " [green](default)[/green]" if key == config.model else ""
        table.add_row(
            f"{key}{marker}",
            cfg.display_name,
            cfg.provider,
            f"{cfg.context_window:,}",
            f"${cfg.cost_input:.2f}",
            f"${cfg.cost_output:.2f}",
        )

    console.print(table)
    console.print(f"\n[dim]{len(registry)} models registered[/dim]")


# ── chatstream config ────────────────────────────────────────────

@config_app.command("show")
def config_show() -> None:
    """Show current chat configuration."""
    config = _load_config()

    table = Table(title="Chat Configuration", show_header=False, show_lines=True)
    table.add_column("Setting", style="bold")
    table.add_column("Value")

    table.add_row("Model", config.model)
    table.add_row("System Prompt", config.system_prompt)
    table.add_row("Timeout", f"{config.timeout}s")
    table.add_row("Database Path", config.db_path)
    table.add_row("Max Concurrent Runs", str(config.max_concurrent_runs))
    table.add_row("Serialize Per Conversation", str(config.serialize_per_conversation))
    table.add_row("History Limit", str(config.history_limit or "unlimited"))
    table.add_row("Error Notice", config.error_notice)

    console.print(table)
