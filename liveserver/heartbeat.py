"""
Per-connection heartbeat bookkeeping.

The monitor is a plain state record with no timers of its own. The
connection task that owns it asks how long it may wait for the next frame
(``seconds_until_check``), reports inbound traffic (``beat``) and runs the
periodic ``check``; the task sends the ping or closes the socket depending
on the returned state.
"""

import time
from enum import Enum
from typing import Callable

DEFAULT_INTERVAL = 5.0
DEFAULT_TIMEOUT = 10.0


class HeartbeatState(str, Enum):
    ALIVE = "alive"
    TIMED_OUT = "timed_out"


class HeartbeatMonitor:
    """Liveness state of one connection."""

    def __init__(
        self,
        interval: float = DEFAULT_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval = interval
        self.timeout = timeout
        self._clock = clock

        now = clock()
        self.last_heartbeat = now
        self.next_check = now + interval
        self.state = HeartbeatState.ALIVE
        self.pings_sent = 0

    @property
    def alive(self) -> bool:
        return self.state is HeartbeatState.ALIVE

    def beat(self) -> None:
        """Record inbound activity (pong, ping or any frame)."""
        if self.alive:
            self.last_heartbeat = self._clock()

    def seconds_until_check(self) -> float:
        return max(0.0, self.next_check - self._clock())

    def idle_for(self) -> float:
        return self._clock() - self.last_heartbeat

    def check(self) -> HeartbeatState:
        """
        Periodic check.

        ALIVE means the caller should send a ping; TIMED_OUT is terminal and
        means the caller should close the connection.
        """
        if not self.alive:
            return self.state

        now = self._clock()
        if now - self.last_heartbeat > self.timeout:
            self.state = HeartbeatState.TIMED_OUT
        else:
            self.next_check = now + self.interval
            self.pings_sent += 1
        return self.state
