"""Acknowledgement timeout tracking.

Each request written to the server arms a timer under its ack key
("login", "synch" or the encoded file path). The matching reply cancels
it. A timer that fires is only reported: nothing is retransmitted and the
session stays open.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from dirsync.client.session.types import AckTimeout

logger = logging.getLogger(__name__)

DEFAULT_ACK_TIMEOUT = 600.0  # 10 minutes


def _log_timeout(timeout: AckTimeout) -> None:
    logger.warning("%s", timeout)


class AckTracker:
    """Thread-safe map of ack key -> pending response timer.

    At most one timer is live per key; arming a key again replaces the
    previous timer.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_ACK_TIMEOUT,
        on_expired: Callable[[AckTimeout], None] | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            timeout: Seconds to wait for a reply.
            on_expired: Called from the timer thread when a reply is late.
                Defaults to logging a warning.
        """
        self._timeout = timeout
        self._on_expired = on_expired or _log_timeout
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    @property
    def timeout(self) -> float:
        """Get the reply timeout in seconds."""
        return self._timeout

    @property
    def pending(self) -> list[str]:
        """Keys still waiting for a reply, sorted."""
        with self._lock:
            return sorted(self._timers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._timers)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._timers

    def arm(self, key: str) -> None:
        """Start (or restart) the response timer for a key."""
        timer = threading.Timer(self._timeout, self._expire, args=(key,))
        timer.daemon = True
        with self._lock:
            previous = self._timers.get(key)
            if previous is not None:
                previous.cancel()
            self._timers[key] = timer
            timer.start()
        logger.debug("Awaiting reply for '%s'", key)

    def cancel(self, key: str) -> None:
        """Stop the timer for a key; no-op if absent."""
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
            logger.debug("Reply received for '%s'", key)

    def cancel_all(self) -> None:
        """Stop every pending timer."""
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        if timers:
            logger.debug("Cancelled %d pending replies", len(timers))

    def _expire(self, key: str) -> None:
        """Timer callback: drop the entry and report the timeout."""
        with self._lock:
            timer = self._timers.get(key)
            # A re-arm may have replaced this timer after it fired
            if timer is None or timer is not threading.current_thread():
                return
            del self._timers[key]
        self._on_expired(AckTimeout(key, self._timeout))
