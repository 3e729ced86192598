"""Shared types for the sync session engine.

This module provides:
- SessionError and its subclasses: TransportError, AuthError, FileIOError,
  AckTimeout, ReconnectStormError
- ProtocolError, ParseError: Re-exported from the wire protocol module
- SessionState: Phases of the session state machine
- CloseReason: Why a session ended, and whether to offer a reconnect
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from dirsync.core.protocol import ParseError, ProtocolError


class SessionError(Exception):
    """Base exception for session errors."""


class TransportError(SessionError):
    """Connecting, reading or writing on the transport failed."""


class AuthError(SessionError):
    """The server rejected the credentials."""


class FileIOError(SessionError):
    """A local file could not be read or indexed.

    Attributes:
        path: Relative path of the file.
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"Cannot read {path}: {reason}")


class AckTimeout(SessionError):
    """No reply arrived for a request within the ack timeout.

    Attributes:
        key: Acknowledgement key of the request.
        timeout: Seconds waited.
    """

    def __init__(self, key: str, timeout: float) -> None:
        self.key = key
        self.timeout = timeout
        super().__init__(f"No response for '{key}' within {timeout:.0f}s")


class ReconnectStormError(SessionError):
    """Reconnections happen at an abnormally high rate."""


class SessionState(Enum):
    """Phase of a sync session."""

    CONNECTING = "connecting"
    AWAITING_CREDENTIALS = "awaiting_credentials"
    AWAITING_LOGIN_ACK = "awaiting_login_ack"
    AWAITING_SYNC_ACK = "awaiting_sync_ack"
    STEADY = "steady"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class CloseReason(Enum):
    """Why a session reached the CLOSED state."""

    SERVER_UNAVAILABLE = "server_unavailable"
    TRANSPORT_ERROR = "transport_error"
    UNAUTHORIZED = "unauthorized"
    PROTOCOL_ERROR = "protocol_error"
    PROTOCOL_VIOLATION = "protocol_violation"
    RECONNECT_STORM = "reconnect_storm"
    INPUT_CLOSED = "input_closed"
    RESYNC_REQUESTED = "resync_requested"
    USER_EXIT = "user_exit"

    @property
    def prompts_reconnect(self) -> bool:
        """Whether the user should be asked to reconnect."""
        return self in (
            CloseReason.SERVER_UNAVAILABLE,
            CloseReason.TRANSPORT_ERROR,
            CloseReason.UNAUTHORIZED,
            CloseReason.RESYNC_REQUESTED,
        )


# Type alias for state transition callback
TransitionCallback = Callable[[SessionState, SessionState], None]

__all__ = [
    "AckTimeout",
    "AuthError",
    "CloseReason",
    "FileIOError",
    "ParseError",
    "ProtocolError",
    "ReconnectStormError",
    "SessionError",
    "SessionState",
    "TransitionCallback",
    "TransportError",
]
