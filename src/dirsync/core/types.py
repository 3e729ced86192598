"""Shared types for dirsync.

This module defines the watcher-facing types used by the session engine
and the directory watcher.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FileStatus(str, Enum):
    """Kind of change reported by the directory watcher."""

    CREATED = "created"
    MODIFIED = "modified"
    ERASED = "erased"


@dataclass(frozen=True)
class NodeInfo:
    """Indexed state of one watched path.

    Attributes:
        hash: Content hash (files) or identity hash (directories).
        is_file: True for regular files, False for directories.
    """

    hash: str
    is_file: bool
