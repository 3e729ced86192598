"""dirsync command line.

Commands:
- configure: Store the server address and the folder to watch
- sync: Synchronize a folder with the server
"""

from __future__ import annotations

import click

from dirsync.client.cli.configure import configure
from dirsync.client.cli.sync import sync


@click.group()
@click.version_option(package_name="dirsync")
def cli() -> None:
    """dirsync - Keep a directory synchronized with a remote server."""


cli.add_command(configure)
cli.add_command(sync)


def main() -> None:
    cli()


__all__ = ["cli", "main"]
