"""CLI entry point for aichat-live."""

import asyncio
import logging

import click
import uvicorn

from .backends import get_transport
from .config import get_directory, get_flush_window, get_log_level, get_server_url, get_session_id
from .phase import ActivityPhase
from .reconciler import ConversationReconciler
from .session import LiveSession


@click.group()
def main():
    """Follow live opencode sessions as one ordered transcript."""
    logging.basicConfig(
        level=get_log_level(),
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
def serve(port: int, host: str):
    """Start the state server."""
    click.echo(f"Starting aichat-live on http://{host}:{port}")
    uvicorn.run("aichat_live.server:app", host=host, port=port, reload=False)


@main.command()
@click.option("--session", "session_id", default=None, help="Session to follow (default: $AICHAT_LIVE_SESSION).")
@click.option("--directory", default=None, help="Working directory of the session (default: cwd).")
@click.option("--server", "server_url", default=None, help="opencode server URL.")
def watch(session_id: str | None, directory: str | None, server_url: str | None):
    """Print phase changes and finished messages of a live session."""
    session_id = session_id or get_session_id()
    if not session_id:
        raise click.UsageError("No session given; pass --session or set AICHAT_LIVE_SESSION.")
    directory = directory or get_directory()

    transport = get_transport(base_url=server_url or get_server_url(), directory=directory)
    reconciler = ConversationReconciler(session_id, directory, window=get_flush_window())
    printer = TranscriptPrinter()
    reconciler.subscribe(printer)

    try:
        asyncio.run(_watch(LiveSession(transport, reconciler)))
    except KeyboardInterrupt:
        click.echo("Stopped.")


async def _watch(live: LiveSession) -> None:
    await live.load_history()
    live.start()
    try:
        await asyncio.Event().wait()
    finally:
        await live.stop()
        await live.transport.aclose()


class TranscriptPrinter:
    """Echo phase transitions and each message once it stops changing."""

    def __init__(self, echo=click.echo):
        self._echo = echo
        self._phase: ActivityPhase | None = None
        self._printed: set[str] = set()
        self._error: str | None = None

    def __call__(self, reconciler: ConversationReconciler) -> None:
        meta = reconciler.phase_meta
        if meta.phase is not self._phase:
            self._phase = meta.phase
            self._echo(click.style(f"[{meta.label}] {meta.description}", dim=True))

        for msg in reconciler.messages:
            if msg.id in self._printed or msg.pending:
                continue
            if msg.role == "assistant" and msg.id == reconciler.streaming_message_id:
                continue
            if not msg.text:
                continue
            self._printed.add(msg.id)
            self._echo(f"{click.style(msg.role.capitalize(), bold=True)}: {msg.text}")

        if reconciler.error and reconciler.error != self._error:
            self._echo(click.style(reconciler.error, fg="red"))
        self._error = reconciler.error
