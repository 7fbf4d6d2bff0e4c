#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import os

import httpx
import typer
from aioconsole import ainput
from rich.console import Console
from rich.table import Table
from rich.text import Text

from shared.event_kinds import EventKind
from shared.frames import ChatEvent
from shared.log import configure_root_logging, get_logger, set_console_level
from .config import DEFAULT_BACKEND_URL, DEFAULT_DISPLAY_NAME, ClientConfig
from .liveness import LivenessProbe
from .presence import PresenceReconciler, SnapshotFormatError
from .state import ChatContext, ChatView, LivenessStatus, PresenceEntry
from .ws_client import ConnectionManager

app = typer.Typer(help="Realtime chat client")
console = Console()
logger = get_logger(__name__)

HELP_TEXT = "/users, /status, /connect, /disconnect, /help, /quit; anything else is sent as a message"

_KIND_STYLES = {
    EventKind.ERROR.value: "red",
    EventKind.JOIN.value: "green",
    EventKind.LEAVE.value: "bright_black",
    EventKind.SYSTEM.value: "italic",
}


def _default_backend() -> str:
    return os.getenv("CHAT_BACKEND_URL", DEFAULT_BACKEND_URL)


def _make_config(backend: str, poll_interval: float) -> ClientConfig:
    try:
        return ClientConfig(backend_url=backend, poll_interval=poll_interval)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def render_event(event: ChatEvent, view: ChatView) -> Text:
    """One timeline line; our own messages are right-aligned and blue."""
    mine = view.is_mine(event)
    style = "bold blue" if mine else _KIND_STYLES.get(event.kind, "")
    line = Text()
    line.append(f"{event.actor_name}: ", style="bold" if not mine else "bold blue")
    line.append(event.content, style=style)
    if mine:
        line.justify = "right"
    return line


def render_presence(entries: tuple[PresenceEntry, ...]) -> Table:
    table = Table(title="Connected Users")
    table.add_column("Name")
    table.add_column("ID", style="dim")
    for entry in entries:
        table.add_row(entry.name, entry.id)
    if not entries:
        table.add_row("None", "")
    return table


def render_status(view: ChatView) -> Text:
    liveness_style = {
        LivenessStatus.OK: "green",
        LivenessStatus.ERROR: "red",
        LivenessStatus.PENDING: "dim",
    }[view.liveness]
    text = Text()
    text.append(f"API {view.liveness.value.upper()}", style=liveness_style)
    text.append(f"  connection {view.state.value}")
    if view.self_id:
        text.append(f"  you are #{view.self_id}")
    return text


@app.command()
def health(
    backend: str = typer.Option(_default_backend(), help="Base URL of the chat backend"),
):
    """Check GET /healthz once and exit."""
    config = _make_config(backend, 5.0)
    status = asyncio.run(LivenessProbe(config).check())
    console.print(render_status(ChatContext(liveness=status).view()))
    if status is not LivenessStatus.OK:
        raise typer.Exit(code=1)


@app.command()
def users(
    backend: str = typer.Option(_default_backend(), help="Base URL of the chat backend"),
):
    """Fetch one presence snapshot and print it."""
    config = _make_config(backend, 5.0)
    context = ChatContext()
    reconciler = PresenceReconciler(config, context.presence)
    try:
        entries = asyncio.run(reconciler.fetch_snapshot())
    except (httpx.HTTPError, SnapshotFormatError) as e:
        console.print(f"[red]Could not load users[/]: {e}")
        raise typer.Exit(code=1)
    context.presence.replace(entries)
    console.print(render_presence(context.presence.entries()))


@app.command()
def run(
    name: str = typer.Option(DEFAULT_DISPLAY_NAME, "--name", "-n", help="Display name to join with"),
    backend: str = typer.Option(_default_backend(), help="Base URL of the chat backend"),
    poll_interval: float = typer.Option(5.0, help="Seconds between presence polls"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Connect and chat interactively."""
    configure_root_logging("DEBUG" if verbose else "WARNING")
    set_console_level("DEBUG" if verbose else "WARNING")
    config = _make_config(backend, poll_interval)

    async def main_loop() -> None:
        context = ChatContext()
        probe = LivenessProbe(config, context=context)

        async with ConnectionManager(config, context) as manager:

            async def print_event(event: ChatEvent) -> None:
                console.print(render_event(event, manager.view()))

            manager.set_default_handler(print_event)

            # Advisory only; runs alongside the connection
            probe_task = asyncio.create_task(probe.check())

            def report_liveness(task: asyncio.Task) -> None:
                if not task.cancelled():
                    console.print(render_status(manager.view()))

            probe_task.add_done_callback(report_liveness)
            logger.info("Starting session as %s against %s", name, config.backend_url)
            console.print(f"[bold green]Chat client starting[/] as {name} on {config.backend_url}")
            await manager.connect(name)

            try:
                while True:
                    try:
                        line = (await ainput(": ")).strip()
                    except EOFError:
                        break
                    if not line:
                        continue
                    if line in {"/quit", "/exit"}:
                        break
                    if line == "/help":
                        console.print(HELP_TEXT)
                        continue
                    if line == "/users":
                        console.print(render_presence(manager.view().presence))
                        continue
                    if line == "/status":
                        console.print(render_status(manager.view()))
                        continue
                    if line == "/connect":
                        if not await manager.connect(name):
                            console.print(f"[dim]Already {manager.state.value}[/]")
                        continue
                    if line == "/disconnect":
                        await manager.disconnect()
                        continue
                    if line.startswith("/"):
                        console.print(f"Unknown command. {HELP_TEXT}")
                        continue
                    if not await manager.send(line):
                        console.print("[dim]Not connected; message not sent[/]")
            finally:
                probe_task.cancel()

    try:
        asyncio.run(main_loop())
    except KeyboardInterrupt:
        pass


def main() -> None:
    app()


if __name__ == "__main__":
    main()
