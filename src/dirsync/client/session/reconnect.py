"""Reconnection backoff and reconnection-storm detection.

This module provides:
- ReconnectionPolicy: Doubling backoff with a give-up ceiling
- ReconnectStormGuard: Detects an abnormal rate of successful reconnects

Backoff sequence with the defaults:
    wait 5s -> retry, wait 10s -> retry, wait 20s -> give up
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from dirsync.client.session.types import ReconnectStormError

logger = logging.getLogger(__name__)

# Default backoff configuration (seconds)
DEFAULT_BASE_DELAY = 5.0
DEFAULT_MAX_DELAY = 20.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Storm detection
DEFAULT_STORM_THRESHOLD = 1000
DEFAULT_STORM_WINDOW = 1.0


@dataclass(frozen=True)
class Backoff:
    """One backoff decision.

    Attributes:
        wait: Seconds to wait before acting.
        give_up: True when automatic retrying must stop after the wait.
    """

    wait: float
    give_up: bool


class ReconnectionPolicy:
    """Exponential backoff that stops once the wait reaches a ceiling.

    The delay resets to its base value on every success and doubles on
    every failure until a computed wait reaches max_delay.
    """

    def __init__(
        self,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the policy.

        Args:
            base_delay: First wait in seconds.
            max_delay: Wait at which retrying stops.
            multiplier: Growth factor between failures.
            sleep: Coroutine function used to wait.
        """
        if base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if multiplier <= 1:
            raise ValueError("multiplier must be greater than 1")
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._multiplier = multiplier
        self._sleep = sleep
        self._delay = base_delay

    @property
    def delay(self) -> float:
        """Get the wait the next failure will use."""
        return self._delay

    def reset(self) -> None:
        """Restore the base delay after a success."""
        self._delay = self._base_delay

    def next_backoff(self) -> Backoff:
        """Record a failure and return what to do about it."""
        wait = self._delay
        give_up = wait >= self._max_delay
        if not give_up:
            self._delay = wait * self._multiplier
        return Backoff(wait=wait, give_up=give_up)

    async def backoff(self, reason: str = "Server unavailable") -> bool:
        """Wait out one failure.

        Args:
            reason: Prefix of the log message.

        Returns:
            True if automatic retrying must stop.
        """
        decision = self.next_backoff()
        logger.warning("%s, retrying in %.0f sec", reason, decision.wait)
        await self._sleep(decision.wait)
        if decision.give_up:
            logger.error("%s, giving up after %.0f sec backoff", reason, decision.wait)
        return decision.give_up


class ReconnectStormGuard:
    """Counts successful reconnects within a rolling time window."""

    def __init__(
        self,
        threshold: int = DEFAULT_STORM_THRESHOLD,
        window: float = DEFAULT_STORM_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the guard.

        Args:
            threshold: Reconnects tolerated within one window.
            window: Window length in seconds.
            clock: Monotonic time source.
        """
        self._threshold = threshold
        self._window = window
        self._clock = clock
        self._count = 0
        self._window_start: float | None = None

    @property
    def count(self) -> int:
        """Reconnects counted in the current window."""
        return self._count

    def record(self) -> None:
        """Count one successful reconnect.

        Raises:
            ReconnectStormError: If more than `threshold` reconnects
                happened within the window.
        """
        now = self._clock()
        if self._window_start is None:
            self._window_start = now
        self._count += 1
        elapsed = now - self._window_start

        if self._count > self._threshold and elapsed <= self._window:
            raise ReconnectStormError(
                f"Too many reconnection attempts ({self._count} in {elapsed:.2f}s)"
            )
        if elapsed > self._window:
            self._count = 0
            self._window_start = now
