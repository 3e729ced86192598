"""Serialized reads of local file content.

Both the watcher path and the reconciliation path read files; a single
lock makes those reads happen one at a time.
"""

from __future__ import annotations

import base64
import threading
from pathlib import Path


class FileReader:
    """Reads file content below a root directory, one read at a time."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._lock = threading.Lock()

    def read(self, rel_path: str) -> bytes:
        """Read the content of a relative path.

        Directories have no content and read as empty bytes.

        Raises:
            OSError: If the file cannot be opened or read.
        """
        path = self._root / rel_path
        with self._lock:
            if path.is_dir():
                return b""
            with open(path, "rb") as f:
                return f.read()

    def read_base64(self, rel_path: str) -> str:
        """Read a relative path and return its content base64-encoded."""
        return base64.b64encode(self.read(rel_path)).decode("ascii")
