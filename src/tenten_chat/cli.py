"""Command-line entry point: run one chat exchange in a terminal."""

from __future__ import annotations

import asyncio
import logging
import sys

import click
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text

from tenten_chat import __version__
from tenten_chat.config import ChatConfig, load_config
from tenten_chat.events.bus import EventBus
from tenten_chat.exchange import ChatSession
from tenten_chat.session.store import SqliteSessionStore
from tenten_chat.types import ChatEvent, EventType, Message
from tenten_chat.uploads import attachment_from_url

console = Console()


def _load(config_path: str | None) -> ChatConfig:
    try:
        config, config_file = load_config(config_path)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    if config_file:
        console.print(f"[dim]Config: {config_file}[/dim]")
    else:
        console.print("[dim]Config: defaults (no tenten_chat.yaml found)[/dim]")
    return config


def _render(message: Message) -> Text:
    text = Text(message.content or "")
    if message.status_state:
        text.append(f"\n[{message.status_state}]", style="dim")
    return text


async def _ask(config: ChatConfig, question: str, images: tuple[str, ...], typing: bool) -> int:
    store = SqliteSessionStore(config.storage.db_path)
    bus = EventBus()
    session = ChatSession(
        store=store,
        event_bus=bus,
        typing_delay=config.typing_delay if typing else 0,
    )
    attachments = [attachment_from_url(url) for url in images]

    with Live(Text(""), console=console, refresh_per_second=12, transient=True) as live:

        def on_update(event: ChatEvent) -> None:
            live.update(_render(event.data["message"]))

        bus.subscribe(EventType.MESSAGE_UPDATED, on_update)
        handle = session.submit(question, config.api, attachments)
        try:
            await handle.wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            handle.cancel("interrupted")
            await handle.wait()

    message = next(m for m in session.transcript if m.id == handle.message_id)
    if message.reasoning:
        console.print(Panel(message.reasoning, title="reasoning", border_style="dim"))
    style = "red" if message.is_error else "cyan"
    console.print(Panel(Markdown(message.content), title="TenTen", border_style=style))
    if handle.notification:
        console.print(f"[red]{handle.notification}[/red]")
    console.print(
        f"[dim]{handle.elapsed:.1f}s"
        + (f"  session {session.session_id}" if session.session_id else "")
        + "[/dim]"
    )
    await session.close()
    store.close()
    return 1 if handle.error else 0


@click.group()
@click.version_option(__version__)
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
def main(verbose: bool) -> None:
    """TenTen Chat - ask TenTen AI from the terminal."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.argument("question")
@click.option("--config", "-c", "config_path", default=None,
              help="Path to tenten_chat.yaml (auto-detected from CWD or ~/.tenten_chat/)")
@click.option("--image", "-i", "images", multiple=True, help="Image URL to attach")
@click.option("--no-typing", is_flag=True, help="Show buffered answers at once")
def ask(question: str, config_path: str | None, images: tuple[str, ...], no_typing: bool) -> None:
    """Send QUESTION and stream the answer."""
    config = _load(config_path)
    code = asyncio.run(_ask(config, question, images, typing=not no_typing))
    sys.exit(code)


@main.command()
@click.argument("session_id")
@click.option("--config", "-c", "config_path", default=None, help="Path to tenten_chat.yaml")
def history(session_id: str, config_path: str | None) -> None:
    """Print stored exchanges for SESSION_ID."""
    config = _load(config_path)
    store = SqliteSessionStore(config.storage.db_path)
    try:
        records = store.load_messages(session_id)
    finally:
        store.close()
    if not records:
        console.print(f"[yellow]No messages for session {session_id}[/yellow]")
        return
    for rec in records:
        console.print(f"[bold]You:[/bold] {rec.question}")
        console.print(Markdown(rec.final_text))
        console.print()


if __name__ == "__main__":
    main()
