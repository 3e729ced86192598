"""Sync command for dirsync CLI.

Commands:
- sync: Watch the folder and keep the server copy current
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

import click

from dirsync.client.cli.config import get_sync_folder, load_config


class ClickEchoHandler(logging.Handler):
    """Logging handler printing through click.

    Warnings and errors go to stderr, everything else to stdout.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            click.echo(msg, err=record.levelno >= logging.WARNING)
        except Exception:
            self.handleError(record)


def setup_logging(verbose: bool) -> None:
    """Route dirsync log records to the console."""
    handler = ClickEchoHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))

    dirsync_logger = logging.getLogger("dirsync")
    for existing in list(dirsync_logger.handlers):
        dirsync_logger.removeHandler(existing)
    dirsync_logger.addHandler(handler)
    dirsync_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    dirsync_logger.propagate = False


def _resolve_settings(
    config: dict[str, Any], host: str | None, port: int | None, folder: Path | None
) -> tuple[str, int, Path]:
    host = host or config.get("host")
    port = port or config.get("port")
    sync_folder = folder.expanduser().resolve() if folder else get_sync_folder(config)

    if not host or not port:
        click.echo("Error: No server configured. Run 'dirsync configure' or pass --host/--port.", err=True)
        sys.exit(1)
    if sync_folder is None:
        click.echo("Error: No folder configured. Run 'dirsync configure' or pass --folder.", err=True)
        sys.exit(1)
    if not sync_folder.is_dir():
        click.echo(f"Error: Folder does not exist: {sync_folder}", err=True)
        sys.exit(1)
    return host, int(port), sync_folder


@click.command()
@click.option("--host", help="Server host (overrides configuration).")
@click.option("--port", "-p", type=click.IntRange(1, 65535), help="Server port (overrides configuration).")
@click.option(
    "--folder",
    "-f",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory to synchronize (overrides configuration).",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug output.")
def sync(host: str | None, port: int | None, folder: Path | None, verbose: bool) -> None:
    """Synchronize a folder with the server.

    Logs in, reconciles the folder with the server copy and then reports
    every local change until interrupted. A lost connection is resumed
    automatically; when the session ends you are asked whether to
    reconnect. Type "exit" while it runs to stop and resynchronize.
    """
    from dirsync.client.console import ConsoleInput
    from dirsync.client.session import SyncSession
    from dirsync.client.watcher import DirectoryWatcher
    from dirsync.core.config import ServerConfig

    setup_logging(verbose)
    host, port, sync_folder = _resolve_settings(load_config(), host, port, folder)

    try:
        server_config = ServerConfig(host=host, port=port)
        watcher = DirectoryWatcher(sync_folder)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Synchronizing {sync_folder} with {server_config.address}")

    console = ConsoleInput()
    credentials = None
    while True:
        session = SyncSession(
            watcher,
            server_config,
            credentials=credentials,
            credential_source=console.read_credentials,
            command_source=console.read_command,
        )
        try:
            reason = asyncio.run(session.run())
        except KeyboardInterrupt:
            click.echo("\nInterrupted.", err=True)
            break

        # The exit command read is still pending; hand its line to the prompt
        console.cancel_pending()

        # Only keep credentials the server accepted
        credentials = session.credentials if session.authenticated else None

        if not reason.prompts_reconnect:
            break
        if not console.confirm("Do you want to reconnect?"):
            break

    click.echo("Bye.")
