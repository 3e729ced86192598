"""Console input shared by the sync session and the CLI.

This module provides:
- ConsoleInput: One reader thread serving every console question in order

The session keeps a read pending for the "exit" command while it runs,
and that read cannot be interrupted. When the session ends, the CLI
cancels it with `cancel_pending()`; the line it eventually returns is
handed to the next question (typically "Do you want to reconnect?").
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from queue import Queue
from typing import TextIO

import click

from dirsync.client.credentials import Credentials

logger = logging.getLogger(__name__)


def _hidden_prompt(text: str) -> str:
    return click.prompt(text, hide_input=True, type=str)


class _Request:
    """One pending console question."""

    def __init__(self, text: str, hide_input: bool) -> None:
        self.text = text
        self.hide_input = hide_input
        self.cancelled = False
        self.value: str | None = None
        self._done = threading.Event()

    def resolve(self, value: str | None) -> None:
        self.value = value
        self._done.set()

    def wait(self) -> str | None:
        self._done.wait()
        return self.value


class ConsoleInput:
    """Serializes console reads from several threads.

    Usage:
        console = ConsoleInput()
        session = SyncSession(watcher, server,
                              credential_source=console.read_credentials,
                              command_source=console.read_command)
        asyncio.run(session.run())
        console.cancel_pending()
        if console.confirm("Do you want to reconnect?"):
            ...
    """

    def __init__(
        self,
        stream: TextIO | None = None,
        hidden_prompt: Callable[[str], str] = _hidden_prompt,
    ) -> None:
        """Initialize the console.

        Args:
            stream: Text stream to read lines from; stdin when None.
            hidden_prompt: Reads a secret without echo; raises click.Abort
                when input is closed.
        """
        self._stream = stream
        self._hidden_prompt = hidden_prompt
        self._requests: Queue[_Request] = Queue()
        self._pending: list[_Request] = []
        self._leftover: str | None = None
        self._closed = False
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

    @property
    def closed(self) -> bool:
        """True once end of input was reached."""
        return self._closed

    def ask(self, text: str = "", hide_input: bool = False) -> str | None:
        """Show `text` and wait for the next line (blocking).

        Returns:
            The line without its newline, or None if input is closed or the
            question was cancelled.
        """
        request = _Request(text, hide_input)
        if text and not hide_input:
            click.echo(text, nl=False)
        with self._lock:
            self._pending.append(request)
            if self._thread is None:
                self._thread = threading.Thread(target=self._run, name="ConsoleReader", daemon=True)
                self._thread.start()
        self._requests.put(request)
        return request.wait()

    def cancel_pending(self) -> None:
        """Release every thread waiting in `ask` with None."""
        with self._lock:
            pending, self._pending = self._pending, []
            for request in pending:
                request.cancelled = True
        for request in pending:
            request.resolve(None)
        if pending:
            logger.debug("Cancelled %d console reads", len(pending))

    def read_credentials(self) -> Credentials:
        """Ask for username and password.

        Raises:
            click.Abort: If input is closed or the read was cancelled.
        """
        username = ""
        while not username:
            line = self.ask("Insert username: ")
            if line is None:
                raise click.Abort()
            username = line.strip()
        password = self.ask("Insert password", hide_input=True)
        if password is None:
            raise click.Abort()
        return Credentials.from_password(username, password)

    def read_command(self) -> str | None:
        """Wait for the next command line."""
        return self.ask()

    def confirm(self, question: str) -> bool:
        """Ask a yes/no question; closed input answers no."""
        while True:
            line = self.ask(f"{question} [Y/n]: ")
            if line is None:
                if self._closed:
                    click.echo()
                return False
            answer = line.strip().lower()
            if answer in ("", "y", "yes"):
                return True
            if answer in ("n", "no"):
                return False

    def _run(self) -> None:
        while True:
            request = self._requests.get()
            if request.cancelled:
                continue
            value = self._read(request)
            with self._lock:
                if request.cancelled:
                    if value is not None and not self._closed:
                        self._leftover = value
                    continue
                self._pending.remove(request)
            request.resolve(value)

    def _read(self, request: _Request) -> str | None:
        with self._lock:
            leftover, self._leftover = self._leftover, None
        if leftover is not None and not request.hide_input:
            return leftover
        if self._closed:
            return None
        try:
            if request.hide_input:
                return self._hidden_prompt(request.text)
            stream = self._stream or click.get_text_stream("stdin")
            line = stream.readline()
        except (click.Abort, EOFError, OSError) as e:
            logger.debug("Console input unavailable: %s", str(e) or type(e).__name__)
            self._closed = True
            return None
        if not line:
            self._closed = True
            return None
        return line.rstrip("\r\n")
