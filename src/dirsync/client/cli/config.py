"""Persistent settings of the dirsync CLI.

Settings live in ~/.dirsync/config.json:
    {"host": "...", "port": 9000, "sync_folder": "/abs/path"}
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click

DEFAULT_PORT = 9000

CONFIG_FILENAME = "config.json"


def get_config_dir() -> Path:
    """Directory holding dirsync settings (~/.dirsync)."""
    return Path.home() / ".dirsync"


def get_config_file() -> Path:
    return get_config_dir() / CONFIG_FILENAME


def load_config() -> dict[str, Any]:
    """Read saved settings; an absent file means no settings.

    Raises:
        click.ClickException: If the file exists but is not a JSON object.
    """
    path = get_config_file()
    if not path.is_file():
        return {}
    try:
        settings = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Cannot read {path}: {e}") from e
    if not isinstance(settings, dict):
        raise click.ClickException(f"Invalid settings in {path}")
    return settings


def save_config(config: dict[str, Any]) -> None:
    path = get_config_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config, indent=2) + "\n", encoding="utf-8")


def get_sync_folder(config: dict[str, Any] | None = None) -> Path | None:
    """Configured folder to watch, resolved; None when unset."""
    settings = load_config() if config is None else config
    folder = settings.get("sync_folder")
    return Path(folder).expanduser().resolve() if folder else None
