"""Configure command for dirsync CLI.

Commands:
- configure: Store the server address and the folder to watch
"""

from __future__ import annotations

from pathlib import Path

import click

from dirsync.client.cli.config import DEFAULT_PORT, get_config_file, load_config, save_config


@click.command()
@click.option("--host", help="Server host name or address.")
@click.option("--port", "-p", type=click.IntRange(1, 65535), help="Server TCP port.")
@click.option(
    "--folder",
    "-f",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory to keep synchronized.",
)
def configure(host: str | None, port: int | None, folder: Path | None) -> None:
    """Store the server address and the folder to watch.

    Options that are not given are asked for interactively, defaulting
    to the current configuration.
    """
    config = load_config()

    if host is None:
        host = click.prompt("Server host", default=config.get("host", "localhost"))
    if port is None:
        port = click.prompt(
            "Server port",
            default=int(config.get("port", DEFAULT_PORT)),
            type=click.IntRange(1, 65535),
        )
    if folder is None:
        folder = Path(
            click.prompt("Folder to synchronize", default=config.get("sync_folder", str(Path.cwd())))
        )

    folder = folder.expanduser().resolve()
    if not folder.exists():
        folder.mkdir(parents=True)
        click.echo(f"Created folder: {folder}")

    config.update({"host": host.strip(), "port": port, "sync_folder": str(folder)})
    save_config(config)
    click.echo(f"Configuration saved to {get_config_file()}")
