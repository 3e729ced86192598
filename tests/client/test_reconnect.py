"""Tests for reconnection backoff and storm detection."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from dirsync.client.session.reconnect import (
    Backoff,
    ReconnectionPolicy,
    ReconnectStormGuard,
)
from dirsync.client.session.types import ReconnectStormError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestReconnectionPolicy:
    """Tests for ReconnectionPolicy."""

    def test_default_sequence_gives_up_at_twenty_seconds(self) -> None:
        """Waits should be 5, 10 then 20 with give-up on the last."""
        policy = ReconnectionPolicy()
        assert policy.next_backoff() == Backoff(wait=5.0, give_up=False)
        assert policy.next_backoff() == Backoff(wait=10.0, give_up=False)
        assert policy.next_backoff() == Backoff(wait=20.0, give_up=True)

    def test_reset_restores_base_delay(self) -> None:
        """A success should restart the sequence."""
        policy = ReconnectionPolicy()
        policy.next_backoff()
        policy.next_backoff()
        policy.reset()
        assert policy.delay == 5.0
        assert policy.next_backoff().wait == 5.0

    def test_give_up_when_delay_exceeds_ceiling(self) -> None:
        """A delay past the ceiling also gives up."""
        policy = ReconnectionPolicy(base_delay=3.0, max_delay=10.0)
        waits = []
        while True:
            decision = policy.next_backoff()
            waits.append(decision.wait)
            if decision.give_up:
                break
        assert waits == [3.0, 6.0, 12.0]

    @pytest.mark.parametrize(
        "kwargs",
        [{"base_delay": 0}, {"base_delay": -1}, {"multiplier": 1.0}],
    )
    def test_invalid_parameters(self, kwargs: dict[str, float]) -> None:
        """Non-positive delays and non-growing multipliers are rejected."""
        with pytest.raises(ValueError):
            ReconnectionPolicy(**kwargs)

    @pytest.mark.asyncio
    async def test_backoff_sleeps_and_reports_give_up(self) -> None:
        """Backoff should sleep for each wait and report the give-up."""
        sleep = AsyncMock()
        policy = ReconnectionPolicy(sleep=sleep)

        results = [await policy.backoff() for _ in range(3)]

        assert results == [False, False, True]
        assert [c.args[0] for c in sleep.await_args_list] == [5.0, 10.0, 20.0]

    @pytest.mark.asyncio
    async def test_twenty_five_failures_never_exceed_ceiling(self) -> None:
        """Reset after each give-up: the wait never goes past 20 seconds."""
        sleep = AsyncMock()
        policy = ReconnectionPolicy(sleep=sleep)

        give_ups = 0
        for _ in range(25):
            if await policy.backoff():
                give_ups += 1
                policy.reset()

        waits = [c.args[0] for c in sleep.await_args_list]
        assert max(waits) == 20.0
        assert give_ups == 8
        assert waits[:6] == [5.0, 10.0, 20.0, 5.0, 10.0, 20.0]


class TestReconnectStormGuard:
    """Tests for ReconnectStormGuard."""

    def test_threshold_within_window_raises(self) -> None:
        """More reconnects than the threshold inside the window is a storm."""
        clock = FakeClock()
        guard = ReconnectStormGuard(threshold=3, window=1.0, clock=clock)
        for _ in range(3):
            guard.record()
        with pytest.raises(ReconnectStormError):
            guard.record()

    def test_default_threshold(self) -> None:
        """The 1001st reconnect within one second is a storm."""
        clock = FakeClock()
        guard = ReconnectStormGuard(clock=clock)
        for i in range(1000):
            clock.now = i * 0.0005
            guard.record()
        with pytest.raises(ReconnectStormError):
            guard.record()

    def test_slow_reconnects_are_tolerated(self) -> None:
        """Reconnects spread over time never trip the guard."""
        clock = FakeClock()
        guard = ReconnectStormGuard(threshold=3, window=1.0, clock=clock)
        for i in range(20):
            clock.now = i * 0.6
            guard.record()

    def test_window_restart_resets_count(self) -> None:
        """Once the window elapsed, counting starts over."""
        clock = FakeClock()
        guard = ReconnectStormGuard(threshold=3, window=1.0, clock=clock)
        guard.record()
        guard.record()
        clock.now = 2.0
        guard.record()
        assert guard.count == 0
