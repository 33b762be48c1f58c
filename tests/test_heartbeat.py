"""Tests for heartbeat liveness."""

import pytest

from liveserver.heartbeat import HeartbeatMonitor, HeartbeatState


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def run_until_closed(monitor: HeartbeatMonitor, clock: FakeClock, horizon: float, respond=None):
    """
    Drive the monitor the way a connection task does, in small steps.

    ``respond(t)`` says whether the peer answers a ping sent at ``t``.
    Returns the time the monitor timed out, or None.
    """
    step = 0.05
    end = clock.now + horizon
    while clock.now < end:
        if monitor.seconds_until_check() <= 0:
            if monitor.check() is HeartbeatState.TIMED_OUT:
                return clock.now
            if respond is not None and respond(clock.now):
                monitor.beat()
        clock.now = round(clock.now + step, 6)
    return None


class TestHeartbeatMonitor:
    """Test the per-connection state machine."""

    def test_initial_state(self):
        clock = FakeClock()
        monitor = HeartbeatMonitor(interval=5, timeout=10, clock=clock)
        assert monitor.alive
        assert monitor.last_heartbeat == 100.0
        assert monitor.seconds_until_check() == 5

    def test_check_schedules_next_ping(self):
        clock = FakeClock()
        monitor = HeartbeatMonitor(interval=5, timeout=10, clock=clock)
        clock.now += 5
        assert monitor.check() is HeartbeatState.ALIVE
        assert monitor.pings_sent == 1
        assert monitor.seconds_until_check() == 5

    def test_timeout_is_strictly_greater(self):
        clock = FakeClock()
        monitor = HeartbeatMonitor(interval=5, timeout=10, clock=clock)
        clock.now += 10
        assert monitor.check() is HeartbeatState.ALIVE
        clock.now += 0.001
        assert monitor.check() is HeartbeatState.TIMED_OUT

    def test_timed_out_is_terminal(self):
        clock = FakeClock()
        monitor = HeartbeatMonitor(interval=5, timeout=10, clock=clock)
        clock.now += 11
        assert monitor.check() is HeartbeatState.TIMED_OUT
        monitor.beat()
        assert monitor.check() is HeartbeatState.TIMED_OUT
        assert monitor.last_heartbeat == 100.0

    @pytest.mark.parametrize("offset", [0.0, 0.3, 1.7, 2.5, 4.9])
    def test_silent_peer_closed_between_timeout_and_timeout_plus_interval(self, offset):
        """Closed no sooner than 10 and no later than 15 after last activity."""
        clock = FakeClock()
        monitor = HeartbeatMonitor(interval=5, timeout=10, clock=clock)
        clock.now += offset
        monitor.beat()
        last_activity = clock.now

        closed_at = run_until_closed(monitor, clock, horizon=60)

        assert closed_at is not None
        assert 10 < closed_at - last_activity <= 15

    def test_responsive_peer_never_closed(self):
        clock = FakeClock()
        monitor = HeartbeatMonitor(interval=5, timeout=10, clock=clock)
        assert run_until_closed(monitor, clock, horizon=300, respond=lambda t: True) is None
        assert monitor.pings_sent >= 59

    def test_peer_that_stops_responding(self):
        clock = FakeClock()
        monitor = HeartbeatMonitor(interval=5, timeout=10, clock=clock)
        closed_at = run_until_closed(monitor, clock, horizon=300, respond=lambda t: t < 150)
        assert closed_at is not None
        assert 10 < closed_at - monitor.last_heartbeat <= 15
