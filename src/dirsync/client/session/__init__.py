"""Protocol session engine for directory synchronization.

Architecture:
    watcher thread ─┐
    input thread  ──┼─► events ─► SyncSession ─► OutboundQueue ─► transport
    reader task   ──┘                 │                │
                                ReconnectionPolicy   AckTracker

Components:
- **SyncSession**: State machine driving connect, login, reconciliation,
  steady-state reporting and reconnection
- **OutboundQueue**: FIFO of outbound messages, one write in flight
- **AckTracker**: Per-request reply timers keyed by ack key
- **ReconnectionPolicy**: Doubling backoff with a give-up ceiling
- **ReconnectStormGuard**: Detects abnormal reconnect rates
"""

from dirsync.client.session.ack import DEFAULT_ACK_TIMEOUT, AckTracker
from dirsync.client.session.engine import SyncSession, Watcher
from dirsync.client.session.outbound import OutboundEntry, OutboundQueue
from dirsync.client.session.reconnect import (
    DEFAULT_BASE_DELAY,
    DEFAULT_MAX_DELAY,
    DEFAULT_STORM_THRESHOLD,
    DEFAULT_STORM_WINDOW,
    Backoff,
    ReconnectionPolicy,
    ReconnectStormGuard,
)
from dirsync.client.session.types import (
    AckTimeout,
    AuthError,
    CloseReason,
    FileIOError,
    ParseError,
    ProtocolError,
    ReconnectStormError,
    SessionError,
    SessionState,
    TransportError,
)

__all__ = [
    # Engine
    "SyncSession",
    "Watcher",
    # Outbound
    "OutboundEntry",
    "OutboundQueue",
    # Acks
    "DEFAULT_ACK_TIMEOUT",
    "AckTracker",
    # Reconnection
    "DEFAULT_BASE_DELAY",
    "DEFAULT_MAX_DELAY",
    "DEFAULT_STORM_THRESHOLD",
    "DEFAULT_STORM_WINDOW",
    "Backoff",
    "ReconnectionPolicy",
    "ReconnectStormGuard",
    # Types
    "AckTimeout",
    "AuthError",
    "CloseReason",
    "FileIOError",
    "ParseError",
    "ProtocolError",
    "ReconnectStormError",
    "SessionError",
    "SessionState",
    "TransportError",
]
