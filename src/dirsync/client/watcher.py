"""Directory watcher with a snapshot index for sync reporting.

This module provides:
- DirectoryWatcher: Watches a directory tree using watchdog and keeps an
  index of relative path -> NodeInfo (hash, is_file)
- WatchCallback: Signature of the change callback

Paths handed to callbacks and used as index keys are relative to the
watched root, with forward slashes.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from dirsync.core.crypto import compute_directory_hash, compute_file_hash
from dirsync.core.types import FileStatus, NodeInfo

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)

WatchCallback = Callable[[str, FileStatus, bool], None]


def _event_path(raw: str | bytes) -> Path:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return Path(raw)


class _IndexingEventHandler(FileSystemEventHandler):
    """Keeps the watcher index current and forwards changes to a callback."""

    def __init__(self, watcher: DirectoryWatcher, callback: WatchCallback) -> None:
        super().__init__()
        self._watcher = watcher
        self._callback = callback

    def _emit(self, rel_path: str, status: FileStatus, is_file: bool) -> None:
        try:
            self._callback(rel_path, status, is_file)
        except RuntimeError as e:
            # Consumer loop already closed
            logger.warning("Dropped %s event for %s: %s", status.value, rel_path, e)

    def _created(self, path: Path) -> None:
        rel_path = self._watcher.relative(path)
        if rel_path is None:
            return
        # Process only regular files and directories
        if not (path.is_file() or path.is_dir()):
            return
        info = self._watcher.index_path(rel_path)
        self._emit(rel_path, FileStatus.CREATED, info.is_file if info else path.is_file())

    def _deleted(self, path: Path, was_directory: bool) -> None:
        rel_path = self._watcher.relative(path)
        if rel_path is None:
            return
        previous = self._watcher.forget(rel_path)
        is_file = previous.is_file if previous else not was_directory
        self._emit(rel_path, FileStatus.ERASED, is_file)

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle created event."""
        if isinstance(event, FileCreatedEvent | DirCreatedEvent):
            self._created(_event_path(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle modified event."""
        if not isinstance(event, FileModifiedEvent | DirModifiedEvent):
            return
        path = _event_path(event.src_path)
        rel_path = self._watcher.relative(path)
        if rel_path is None:
            return
        if isinstance(event, DirModifiedEvent):
            if path.is_dir():
                self._emit(rel_path, FileStatus.MODIFIED, False)
            return
        if not path.is_file():
            return
        previous = self._watcher.peek(rel_path)
        info = self._watcher.index_path(rel_path)
        if info is not None and previous == info:
            # Metadata-only change, content unchanged
            return
        self._emit(rel_path, FileStatus.MODIFIED, True)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle deleted event."""
        if isinstance(event, FileDeletedEvent | DirDeletedEvent):
            self._deleted(_event_path(event.src_path), isinstance(event, DirDeletedEvent))

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle moved event as erase of the source plus create of the target."""
        if isinstance(event, FileMovedEvent | DirMovedEvent):
            self._deleted(_event_path(event.src_path), isinstance(event, DirMovedEvent))
            self._created(_event_path(event.dest_path))


class DirectoryWatcher:
    """Watches a directory tree and maintains its path -> hash index.

    `start` blocks the calling thread until `stop` is called, so it is
    meant to run on its own thread. It can be started again after a stop.
    """

    def __init__(self, watch_path: Path) -> None:
        """Initialize the watcher.

        Args:
            watch_path: Directory to watch.

        Raises:
            ValueError: If the path is not a directory.
        """
        self._watch_path = Path(watch_path).resolve()
        if not self._watch_path.is_dir():
            raise ValueError(f"Watch path must be a directory: {watch_path}")

        self._index: dict[str, NodeInfo] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._observer: BaseObserver | None = None

    @property
    def watch_path(self) -> Path:
        """Get the watched directory path."""
        return self._watch_path

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._observer is not None

    def relative(self, path: Path) -> str | None:
        """Relative form of an absolute path, None if outside the root."""
        try:
            rel_path = path.relative_to(self._watch_path)
        except ValueError:
            return None
        rel_str = str(rel_path).replace("\\", "/")
        if rel_str in ("", "."):
            return None
        return rel_str

    def resolve(self, rel_path: str) -> Path:
        """Absolute path of a relative path."""
        return self._watch_path / rel_path

    def _describe(self, rel_path: str) -> NodeInfo | None:
        path = self.resolve(rel_path)
        try:
            if path.is_dir():
                return NodeInfo(hash=compute_directory_hash(rel_path), is_file=False)
            if path.is_file():
                return NodeInfo(hash=compute_file_hash(path), is_file=True)
        except OSError as e:
            logger.warning("Cannot index %s: %s", rel_path, e)
        return None

    def index_path(self, rel_path: str) -> NodeInfo | None:
        """Refresh the index entry of one path."""
        info = self._describe(rel_path)
        with self._lock:
            if info is None:
                self._index.pop(rel_path, None)
            else:
                self._index[rel_path] = info
        return info

    def peek(self, rel_path: str) -> NodeInfo | None:
        """Indexed entry of a path without raising."""
        with self._lock:
            return self._index.get(rel_path)

    def forget(self, rel_path: str) -> NodeInfo | None:
        """Remove a path (and its children) from the index."""
        prefix = rel_path + "/"
        with self._lock:
            for key in [k for k in self._index if k.startswith(prefix)]:
                del self._index[key]
            return self._index.pop(rel_path, None)

    def scan(self) -> dict[str, NodeInfo]:
        """Walk the tree and describe every file and directory, sorted."""
        index: dict[str, NodeInfo] = {}
        for root, dirs, files in os.walk(self._watch_path):
            dirs.sort()
            for name in [*dirs, *sorted(files)]:
                rel_path = self.relative(Path(root) / name)
                if rel_path is None:
                    continue
                info = self._describe(rel_path)
                if info is not None:
                    index[rel_path] = info
        return dict(sorted(index.items()))

    def snapshot(self) -> dict[str, NodeInfo]:
        """Rescan the tree, replace the index and return a copy of it."""
        index = self.scan()
        with self._lock:
            self._index = dict(index)
        logger.debug("Indexed %d paths under %s", len(index), self._watch_path)
        return index

    def lookup(self, rel_path: str) -> NodeInfo:
        """Indexed entry of a path.

        Raises:
            KeyError: If the path is not indexed.
        """
        with self._lock:
            return self._index[rel_path]

    def start(self, callback: WatchCallback) -> None:
        """Watch for changes until `stop` is called (blocking).

        Args:
            callback: Called from the observer thread with
                (relative path, status, is_file) for every change.
        """
        if self._observer is not None:
            raise RuntimeError("DirectoryWatcher already running")

        observer: BaseObserver = Observer()
        observer.schedule(
            _IndexingEventHandler(self, callback), str(self._watch_path), recursive=True
        )
        observer.start()
        self._observer = observer
        logger.info("Watching %s", self._watch_path)
        try:
            self._stop_event.wait()
        finally:
            observer.stop()
            observer.join(timeout=5.0)
            self._observer = None
            self._stop_event.clear()
            logger.info("Stopped watching %s", self._watch_path)

    def stop(self) -> None:
        """Make a running (or about to run) `start` return."""
        self._stop_event.set()
