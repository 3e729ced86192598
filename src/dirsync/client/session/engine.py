"""Protocol session engine.

SyncSession drives one client session against the dirsync server:

    CONNECTING ─► AWAITING_CREDENTIALS ─► AWAITING_LOGIN_ACK ─► AWAITING_SYNC_ACK ─► STEADY
         │                                      │                      │              │
         └── backoff ceiling ──► CLOSED ◄── unauthorized ◄─────────────┴── wrong_action ┘
                                   ▲
                    RECONNECTING ──┘ (read failure: reconnect, re-login, resume watch)

Everything runs on one asyncio event loop through a single arbitration
loop consuming typed events. The directory watcher and the console input
(credentials, then the "exit" command) run on their own threads and only
post events to that loop. Changes seen while logging in are deferred and
reported once the server accepted the login.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Protocol

from dirsync.client.credentials import Credentials, prompt_credentials
from dirsync.client.files import FileReader
from dirsync.client.session.ack import AckTracker
from dirsync.client.session.events import (
    CredentialsFailed,
    CredentialsReady,
    InboundMessage,
    ReadFailed,
    ResyncRequested,
    SessionEvent,
    StopRequested,
    WatchEvent,
    WriteFailed,
)
from dirsync.client.session.outbound import OutboundEntry, OutboundQueue
from dirsync.client.session.reconnect import ReconnectionPolicy, ReconnectStormGuard
from dirsync.client.session.types import (
    AuthError,
    CloseReason,
    FileIOError,
    ReconnectStormError,
    SessionState,
    TransitionCallback,
    TransportError,
)
from dirsync.core.config import ServerConfig, SessionConfig
from dirsync.core.protocol import (
    LOGIN_KEY,
    LOGIN_RETRY_REASONS,
    SYNCH_KEY,
    ActionType,
    FrameDecoder,
    Message,
    ParseError,
    ProtocolError,
    StatusType,
    ack_key_from_reply,
    decode_message,
    decode_path,
    encode_path,
    erased_message,
    file_message,
    login_message,
    parse_stale_paths,
    synchronize_message,
)
from dirsync.core.types import FileStatus, NodeInfo

logger = logging.getLogger(__name__)

Transport = tuple[asyncio.StreamReader, asyncio.StreamWriter]
ConnectFunc = Callable[[], Awaitable[Transport]]

# States in which local changes are reported to the server
_WATCHING_STATES = (SessionState.AWAITING_SYNC_ACK, SessionState.STEADY)

# States in which local changes are held back until the next login succeeds
_DEFERRING_STATES = (
    SessionState.AWAITING_CREDENTIALS,
    SessionState.AWAITING_LOGIN_ACK,
    SessionState.RECONNECTING,
)

COMMAND_EXIT = "exit"


class Watcher(Protocol):
    """Directory watcher consumed by the session."""

    @property
    def watch_path(self) -> Path: ...

    def start(self, callback: Callable[[str, FileStatus, bool], None]) -> None: ...

    def stop(self) -> None: ...

    def snapshot(self) -> dict[str, NodeInfo]: ...

    def lookup(self, rel_path: str) -> NodeInfo: ...


class SyncSession:
    """One connection lifetime (including automatic reconnects).

    Usage:
        session = SyncSession(watcher, ServerConfig("sync.example.com", 9000))
        reason = asyncio.run(session.run())
        if reason.prompts_reconnect:
            ...  # ask the user, then build a new session

    A session runs once; reconnecting after it closed means creating a new
    one (pass `credentials=old.credentials` to skip the prompt).
    """

    def __init__(
        self,
        watcher: Watcher,
        server: ServerConfig | None = None,
        *,
        config: SessionConfig | None = None,
        credentials: Credentials | None = None,
        credential_source: Callable[[], Credentials] = prompt_credentials,
        command_source: Callable[[], str | None] | None = None,
        connect: ConnectFunc | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        on_transition: TransitionCallback | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            watcher: Directory watcher providing changes and the snapshot.
            server: Server address; required unless `connect` is given.
            config: Timeouts, backoff and storm parameters.
            credentials: Credentials cached from a previous session.
            credential_source: Blocking callable asking the user to log in.
            command_source: Blocking callable returning the next console
                command, None once input is closed. Typing "exit" closes the
                session with RESYNC_REQUESTED.
            connect: Coroutine function opening the transport.
            sleep: Coroutine function used for backoff waits.
            clock: Monotonic clock for storm detection.
            on_transition: Called with (old, new) on every state change.
        """
        if server is None and connect is None:
            raise ValueError("Either server or connect must be provided")
        self._watcher = watcher
        self._server = server
        self._config = config or SessionConfig()
        self._credentials = credentials
        self._credential_source = credential_source
        self._command_source = command_source
        self._connect_func = connect or self._open_connection
        self._on_transition = on_transition

        self._files = FileReader(watcher.watch_path)
        self._acks = AckTracker(timeout=self._config.ack_timeout)
        self._policy = ReconnectionPolicy(
            base_delay=self._config.base_delay,
            max_delay=self._config.max_delay,
            sleep=sleep,
        )
        self._storm = ReconnectStormGuard(
            threshold=self._config.storm_threshold,
            window=self._config.storm_window,
            clock=clock,
        )

        self._state = SessionState.CONNECTING
        self._close_reason: CloseReason | None = None
        self._authenticated = False
        self._skipped: set[str] = set()
        self._deferred: list[WatchEvent] = []

        # Bound to the running loop in run()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._events: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._outbound: OutboundQueue | None = None

        # Connection
        self._generation = 0
        self._reader_task: asyncio.Task[None] | None = None
        self._writer: asyncio.StreamWriter | None = None

        # Producer threads
        self._watch_thread: threading.Thread | None = None
        self._input_thread: threading.Thread | None = None

    # =========================================================================
    # Public interface
    # =========================================================================

    @property
    def state(self) -> SessionState:
        """Get the current session state."""
        return self._state

    @property
    def close_reason(self) -> CloseReason | None:
        """Why the session closed, None while it is open."""
        return self._close_reason

    @property
    def credentials(self) -> Credentials | None:
        """Credentials entered or cached for this session."""
        return self._credentials

    @property
    def authenticated(self) -> bool:
        """True once the server accepted the credentials."""
        return self._authenticated

    @property
    def acks(self) -> AckTracker:
        """Get the acknowledgement tracker."""
        return self._acks

    @property
    def skipped_paths(self) -> frozenset[str]:
        """Relative paths excluded from reporting after a read failure."""
        return frozenset(self._skipped)

    def request_stop(self) -> None:
        """Ask a running session to close (thread-safe)."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._events.put_nowait, StopRequested())

    async def run(self) -> CloseReason:
        """Run the session until it closes.

        Returns:
            The reason the session closed.
        """
        if self._loop is not None:
            raise RuntimeError("SyncSession can only run once")
        self._loop = asyncio.get_running_loop()
        self._outbound = OutboundQueue(
            self._loop,
            self._send,
            on_write=self._on_write,
            on_failed=self._on_write_failed,
        )

        try:
            if await self._connect_with_backoff():
                self._await_credentials()
            while self._state is not SessionState.CLOSED:
                event = await self._events.get()
                await self._dispatch(event)
        except asyncio.CancelledError:
            self._close(CloseReason.USER_EXIT)
            raise
        finally:
            await self._teardown()

        assert self._close_reason is not None
        return self._close_reason

    # =========================================================================
    # Connection handling
    # =========================================================================

    async def _open_connection(self) -> Transport:
        assert self._server is not None
        return await asyncio.wait_for(
            asyncio.open_connection(self._server.host, self._server.port),
            timeout=self._server.connect_timeout,
        )

    @property
    def _target(self) -> str:
        return self._server.address if self._server else "server"

    async def _connect_with_backoff(self) -> bool:
        """Connect, retrying with backoff until success or the ceiling.

        Returns:
            True when connected; False when the session was closed.
        """
        while True:
            logger.info("Trying to connect to %s...", self._target)
            try:
                reader, writer = await self._connect_func()
            except OSError as e:
                logger.debug("Connection attempt failed: %s", e)
                if await self._policy.backoff("Server unavailable"):
                    self._close(CloseReason.SERVER_UNAVAILABLE)
                    return False
                continue

            self._policy.reset()
            self._attach(reader, writer)
            logger.info("Connected to %s", self._target)
            return True

    def _attach(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        assert self._loop is not None
        self._generation += 1
        self._writer = writer
        self._reader_task = self._loop.create_task(
            self._read_loop(reader, self._generation),
            name="SyncSessionReader",
        )

    async def _detach(self) -> None:
        self._generation += 1
        task, self._reader_task = self._reader_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        writer, self._writer = self._writer, None
        if writer is not None:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()

    async def _read_loop(self, reader: asyncio.StreamReader, generation: int) -> None:
        """Decode inbound frames and post them in arrival order."""
        decoder = FrameDecoder()
        try:
            while True:
                data = await reader.read(self._config.read_chunk_size)
                if not data:
                    raise TransportError("Connection closed by server")
                for frame in decoder.feed(data):
                    message = decode_message(frame)
                    logger.debug("Received %r", message)
                    self._events.put_nowait(InboundMessage(message, generation))
        except ParseError as e:
            self._events.put_nowait(ReadFailed(e, generation))
        except TransportError as e:
            self._events.put_nowait(ReadFailed(e, generation))
        except OSError as e:
            self._events.put_nowait(ReadFailed(TransportError(str(e) or type(e).__name__), generation))

    async def _send(self, data: bytes) -> None:
        writer = self._writer
        if writer is None:
            raise ConnectionError("Not connected")
        writer.write(data)
        await writer.drain()

    def _on_write(self, entry: OutboundEntry) -> None:
        self._acks.arm(entry.ack_key)

    def _on_write_failed(self, error: Exception, generation: int) -> None:
        self._events.put_nowait(WriteFailed(error, generation))

    async def _reconnect(self) -> None:
        """Re-establish the connection and resume the session."""
        self._transition(SessionState.RECONNECTING)
        await self._stop_watch()
        assert self._outbound is not None
        self._outbound.reset()
        await self._detach()

        if not await self._connect_with_backoff():
            return
        try:
            self._storm.record()
        except ReconnectStormError as e:
            logger.error("%s", e)
            self._close(CloseReason.RECONNECT_STORM)
            return

        if self._credentials is None:
            self._await_credentials()
            return
        self._send_login()
        self._start_watch()

    # =========================================================================
    # Producer threads
    # =========================================================================

    def _post(self, event: SessionEvent) -> None:
        """Hand an event to the arbitration loop from another thread."""
        assert self._loop is not None
        try:
            self._loop.call_soon_threadsafe(self._events.put_nowait, event)
        except RuntimeError:
            # Loop closed: the session already ended
            logger.debug("Dropped %s posted after the session ended", type(event).__name__)

    def _start_input(self) -> None:
        """Start the console thread unless there is nothing to read."""
        if self._credentials is not None and self._command_source is None:
            return
        if self._input_thread is not None and self._input_thread.is_alive():
            return
        self._input_thread = threading.Thread(
            target=self._read_input,
            args=(self._credentials is None,),
            name="ConsoleInput",
            daemon=True,
        )
        self._input_thread.start()

    def _read_input(self, need_credentials: bool) -> None:
        if need_credentials:
            try:
                credentials = self._credential_source()
            except Exception as e:
                self._post(CredentialsFailed(e))
                return
            self._post(CredentialsReady(credentials))
        if self._command_source is None:
            return

        logger.info("Type '%s' to stop and resynchronize", COMMAND_EXIT)
        while True:
            command = self._command_source()
            if command is None:
                logger.debug("Console input closed")
                return
            command = command.strip()
            if command.lower() == COMMAND_EXIT:
                self._post(ResyncRequested())
                return
            if command:
                logger.warning("Unknown command '%s'", command)

    def _start_watch(self) -> None:
        if self._watch_thread is not None and self._watch_thread.is_alive():
            return
        self._watch_thread = threading.Thread(
            target=self._run_watcher, name="DirectoryWatcher", daemon=True
        )
        self._watch_thread.start()

    def _run_watcher(self) -> None:
        try:
            self._watcher.start(self._on_watch_change)
        except OSError as e:
            logger.error("Directory watcher stopped: %s", e)

    def _on_watch_change(self, path: str, status: FileStatus, is_file: bool) -> None:
        self._post(WatchEvent(path, FileStatus(status), is_file))

    async def _stop_watch(self) -> None:
        thread, self._watch_thread = self._watch_thread, None
        if thread is None:
            return
        self._watcher.stop()
        assert self._loop is not None
        await self._loop.run_in_executor(None, thread.join)

    # =========================================================================
    # Event dispatch
    # =========================================================================

    async def _dispatch(self, event: SessionEvent) -> None:
        if isinstance(event, InboundMessage):
            if event.generation == self._generation:
                await self._handle_inbound(event.message)
        elif isinstance(event, WatchEvent):
            await self._handle_watch_event(event)
        elif isinstance(event, CredentialsReady):
            self._handle_credentials(event.credentials)
        elif isinstance(event, ReadFailed):
            await self._handle_read_failure(event)
        elif isinstance(event, WriteFailed):
            self._handle_write_failure(event)
        elif isinstance(event, CredentialsFailed):
            logger.error("Credential input failed: %s", str(event.error) or type(event.error).__name__)
            self._close(CloseReason.INPUT_CLOSED)
        elif isinstance(event, StopRequested):
            self._close(CloseReason.USER_EXIT)
        elif isinstance(event, ResyncRequested):
            self._close(CloseReason.RESYNC_REQUESTED)

    def _handle_credentials(self, credentials: Credentials) -> None:
        if self._state is not SessionState.AWAITING_CREDENTIALS:
            logger.debug("Ignoring credentials while %s", self._state.value)
            return
        self._credentials = credentials
        self._send_login()

    async def _handle_read_failure(self, event: ReadFailed) -> None:
        if event.generation != self._generation:
            return
        if self._state in (SessionState.CLOSED, SessionState.RECONNECTING):
            return
        if isinstance(event.error, ProtocolError):
            logger.error("Error while communicating with server: %s", event.error)
            self._close(CloseReason.PROTOCOL_ERROR)
            return
        logger.warning("Connection lost: %s", event.error)
        await self._reconnect()

    def _handle_write_failure(self, event: WriteFailed) -> None:
        assert self._outbound is not None
        if event.generation != self._outbound.generation:
            return
        if self._state in (SessionState.CLOSED, SessionState.RECONNECTING):
            return
        logger.error("Error while writing: %s", event.error)
        self._close(CloseReason.TRANSPORT_ERROR)

    # =========================================================================
    # Inbound messages
    # =========================================================================

    async def _handle_inbound(self, message: Message) -> None:
        try:
            await self._handle_status(message)
        except AuthError as e:
            logger.error("%s", e)
            self._authenticated = False
            self._close(CloseReason.UNAUTHORIZED)
        except ProtocolError as e:
            logger.error("Error while communicating with server: %s", e)
            self._close(CloseReason.PROTOCOL_ERROR)

    async def _handle_status(self, message: Message) -> None:
        try:
            status = StatusType(message.header)
        except ValueError as e:
            raise ProtocolError(f"Unexpected header {message.header}") from e

        if status is StatusType.WRONG_ACTION:
            logger.error("Wrong action reported by server")
            self._close(CloseReason.PROTOCOL_VIOLATION)
        elif status is StatusType.COMPLETED:
            key = ack_key_from_reply(message.text)
            self._acks.cancel(key)
            logger.info("Operation completed: %s", decode_path(key))
        elif status is StatusType.SERVICE_UNAVAILABLE:
            await self._handle_unavailable(message.text)
        elif status in (StatusType.AUTHORIZED, StatusType.UNAUTHORIZED):
            self._expect(SessionState.AWAITING_LOGIN_ACK, status)
            self._acks.cancel(LOGIN_KEY)
            if status is StatusType.UNAUTHORIZED:
                raise AuthError("Unauthorized")
            await self._on_authorized()
        else:
            self._expect(SessionState.AWAITING_SYNC_ACK, status)
            self._acks.cancel(SYNCH_KEY)
            self._transition(SessionState.STEADY)
            if status is StatusType.IN_NEED:
                stale = parse_stale_paths(message.text)
                logger.info("Server needs %d paths", len(stale))
                for rel_path in stale:
                    await self._announce(rel_path, ActionType.CREATED)
            else:
                logger.info("Server already up to date")

    def _expect(self, state: SessionState, status: StatusType) -> None:
        if self._state is not state:
            raise ProtocolError(
                f"Unexpected {status.name.lower()} while {self._state.value}"
            )

    async def _on_authorized(self) -> None:
        logger.info("Authorized")
        self._authenticated = True
        self._policy.reset()
        self._start_watch()
        await self._send_synchronize()
        await self._replay_deferred()

    async def _replay_deferred(self) -> None:
        """Report changes held back while the session was logging in."""
        events, self._deferred = self._deferred, []
        if events:
            logger.info("Reporting %d changes made while logged out", len(events))
        for event in events:
            await self._handle_watch_event(event)

    async def _handle_unavailable(self, reason: str) -> None:
        state = self._state
        if state is SessionState.AWAITING_LOGIN_ACK:
            retry_login = True
        elif state is SessionState.AWAITING_SYNC_ACK:
            retry_login = False
        elif state is SessionState.STEADY:
            retry_login = reason in LOGIN_RETRY_REASONS
        else:
            raise ProtocolError(f"Unexpected service_unavailable while {state.value}")

        logger.warning("Service unavailable (%s)", reason or "no reason given")
        if await self._policy.backoff("Server unavailable"):
            self._close(CloseReason.SERVER_UNAVAILABLE)
            return
        if retry_login:
            self._send_login()
        else:
            await self._send_synchronize()

    # =========================================================================
    # Outbound messages
    # =========================================================================

    def _await_credentials(self) -> None:
        self._transition(SessionState.AWAITING_CREDENTIALS)
        if self._credentials is not None:
            self._send_login()
        self._start_input()

    def _send_login(self) -> None:
        assert self._outbound is not None and self._credentials is not None
        self._outbound.enqueue(
            login_message(self._credentials.username, self._credentials.password_digest)
        )
        self._transition(SessionState.AWAITING_LOGIN_ACK)

    async def _send_synchronize(self) -> None:
        assert self._loop is not None and self._outbound is not None
        snapshot = await self._loop.run_in_executor(None, self._watcher.snapshot)
        hashes = {encode_path(path): info.hash for path, info in snapshot.items()}
        self._outbound.enqueue(synchronize_message(hashes))
        logger.info("Synchronizing %d paths", len(hashes))
        self._transition(SessionState.AWAITING_SYNC_ACK)

    async def _read_entry(self, rel_path: str) -> tuple[str, NodeInfo]:
        """Read the content and index entry of a path.

        Raises:
            FileIOError: If either is unavailable.
        """
        assert self._loop is not None
        try:
            content = await self._loop.run_in_executor(None, self._files.read_base64, rel_path)
        except OSError as e:
            raise FileIOError(rel_path, e.strerror or str(e)) from e
        try:
            info = self._watcher.lookup(rel_path)
        except KeyError as e:
            raise FileIOError(rel_path, "not indexed") from e
        return content, info

    async def _announce(self, rel_path: str, action: ActionType) -> None:
        """Send the content of a path as a created/modified message."""
        if rel_path in self._skipped:
            logger.debug("Not reporting skipped path %s", rel_path)
            return
        try:
            content, info = await self._read_entry(rel_path)
        except FileIOError as e:
            self._skipped.add(rel_path)
            logger.warning("%s. It won't be sent.", e)
            return
        assert self._outbound is not None
        self._outbound.enqueue(
            file_message(action, encode_path(rel_path), info.hash, info.is_file, content)
        )

    async def _handle_watch_event(self, event: WatchEvent) -> None:
        if self._state in _DEFERRING_STATES:
            logger.debug("Deferring %s of %s while %s", event.status.value, event.path, self._state.value)
            self._deferred.append(event)
            return
        if self._state not in _WATCHING_STATES:
            logger.debug("Ignoring %s of %s while %s", event.status.value, event.path, self._state.value)
            return

        kind = "File" if event.is_file else "Directory"
        if event.status is FileStatus.CREATED:
            logger.info("%s created: %s", kind, event.path)
            await self._announce(event.path, ActionType.CREATED)
        elif event.status is FileStatus.MODIFIED:
            logger.info("%s modified: %s", kind, event.path)
            if event.is_file:
                await self._announce(event.path, ActionType.MODIFIED)
        elif event.path in self._skipped:
            # Never announced, so its deletion is not reported either
            logger.debug("Not reporting erase of skipped path %s", event.path)
        else:
            logger.info("%s erased: %s", kind, event.path)
            assert self._outbound is not None
            self._outbound.enqueue(erased_message(encode_path(event.path)))

    # =========================================================================
    # State
    # =========================================================================

    def _transition(self, new_state: SessionState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        logger.info("Session %s -> %s", old_state.value, new_state.value)
        if self._on_transition:
            self._on_transition(old_state, new_state)

    def _close(self, reason: CloseReason) -> None:
        if self._state is SessionState.CLOSED:
            return
        self._close_reason = reason
        self._transition(SessionState.CLOSED)
        self._acks.cancel_all()
        self._deferred.clear()
        if self._outbound is not None:
            self._outbound.reset()
        if reason in (CloseReason.USER_EXIT, CloseReason.RESYNC_REQUESTED):
            logger.info("Session closed")
        else:
            logger.error("Session closed: %s", reason.value.replace("_", " "))

    async def _teardown(self) -> None:
        await self._stop_watch()
        await self._detach()
        # A console read cannot be interrupted; the daemon thread is left
        # behind and anything it posts later is dropped.
        self._input_thread = None
