"""
Process-wide table of live control-plane connections.

All reads and writes go through one asyncio.Lock, so a relay or broadcast
never sees a half-removed entry. Removing an entry and closing its outbox
happen together under that lock, and a closed outbox refuses messages.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

import structlog

from liveserver.heartbeat import HeartbeatMonitor
from liveserver.protocol import ROLE_CLIENT, ROLE_CONTROLLER, ResultEnvelope

logger = structlog.get_logger(__name__)


class Role(str, Enum):
    """Connection role."""
    UNCLASSIFIED = "unclassified"
    CONTROLLER = ROLE_CONTROLLER
    CLIENT = ROLE_CLIENT


class Outbox:
    """
    Bounded outbound queue of one connection.

    ``offer`` never waits: a full or closed outbox rejects the message and
    the caller reports the failure.
    """

    def __init__(self, maxsize: int = 64):
        self._queue: "asyncio.Queue[Optional[ResultEnvelope]]" = asyncio.Queue(maxsize)
        self.closed = False

    def __len__(self) -> int:
        return self._queue.qsize()

    def offer(self, envelope: ResultEnvelope) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(envelope)
        except asyncio.QueueFull:
            return False
        return True

    async def get(self) -> Optional[ResultEnvelope]:
        """Next message, or None once the outbox is closed and drained."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def get_nowait(self) -> Optional[ResultEnvelope]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Wake a writer parked on an empty queue.
        if not self._queue.full():
            self._queue.put_nowait(None)


@dataclass(eq=False)
class Connection:
    """A live WebSocket peer."""
    peer_address: str
    peer_port: int
    outbox: Outbox = field(default_factory=Outbox)
    heartbeat: HeartbeatMonitor = field(default_factory=HeartbeatMonitor)
    id: int = 0
    role: Role = Role.UNCLASSIFIED

    @property
    def classified(self) -> bool:
        return self.role is not Role.UNCLASSIFIED

    @property
    def last_heartbeat(self) -> float:
        return self.heartbeat.last_heartbeat


class ConnectionRegistry:
    """Live connections keyed by id, plus pending Echo reply routes."""

    def __init__(self):
        self._connections: Dict[int, Connection] = {}
        # (responder id, correlation id) -> id of the connection awaiting the reply
        self._routes: Dict[Tuple[int, int], int] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._connections)

    async def register(self, conn: Connection) -> int:
        """Assign ``conn`` a fresh non-zero id and start tracking it."""
        async with self._lock:
            conn.id = next(self._ids)
            self._connections[conn.id] = conn
        logger.debug("Connection registered", connection_id=conn.id)
        return conn.id

    async def deregister(self, conn_id: int) -> bool:
        """
        Remove a connection and close its outbox.

        Returns True only for the call that actually removed it, so
        concurrent teardown paths can tell which one won.
        """
        async with self._lock:
            conn = self._connections.pop(conn_id, None)
            if conn is None:
                return False
            conn.outbox.close()
            stale = [key for key, origin in self._routes.items() if conn_id in (key[0], origin)]
            for key in stale:
                del self._routes[key]
        logger.debug("Connection deregistered", connection_id=conn_id, dropped_routes=len(stale))
        return True

    async def lookup(self, conn_id: int) -> Optional[Connection]:
        async with self._lock:
            return self._connections.get(conn_id)

    async def classify(self, conn_id: int, role: Role) -> bool:
        """Set the role of an unclassified connection. False if not possible."""
        if role is Role.UNCLASSIFIED:
            return False
        async with self._lock:
            conn = self._connections.get(conn_id)
            if conn is None or conn.classified:
                return False
            conn.role = role
            return True

    async def broadcast(self, role: Role, envelope: ResultEnvelope) -> int:
        """Offer ``envelope`` to every connection with ``role``. Returns deliveries."""
        delivered = 0
        async with self._lock:
            for conn in self._connections.values():
                if conn.role is not role:
                    continue
                if conn.outbox.offer(envelope):
                    delivered += 1
                else:
                    logger.warning("Outbox full, dropped broadcast", connection_id=conn.id)
        return delivered

    async def send(self, conn_id: int, envelope: ResultEnvelope, role: Optional[Role] = None) -> bool:
        """Offer ``envelope`` to one live connection, optionally requiring a role."""
        async with self._lock:
            conn = self._connections.get(conn_id)
            if conn is None or (role is not None and conn.role is not role):
                return False
            return conn.outbox.offer(envelope)

    async def relay(self, target_id: int, envelope: ResultEnvelope, origin_id: int) -> bool:
        """
        Forward a request to a client and remember who expects the reply.

        The reply route is keyed by (target, correlation id) so different
        controllers may reuse correlation ids. While a route is pending, a
        second request with the same key is refused rather than taking it over.
        """
        key = (target_id, envelope.correlation_id)
        async with self._lock:
            target = self._connections.get(target_id)
            if target is None or target.role is not Role.CLIENT:
                return False
            if origin_id not in self._connections:
                return False
            if key in self._routes:
                logger.info("Reply route in use", target_id=target_id, correlation_id=envelope.correlation_id)
                return False
            self._routes[key] = origin_id
            if not target.outbox.offer(envelope):
                del self._routes[key]
                return False
            return True

    async def route_reply(self, responder_id: int, envelope: ResultEnvelope) -> bool:
        """Deliver a reply to whoever relayed the matching request."""
        async with self._lock:
            origin_id = self._routes.pop((responder_id, envelope.correlation_id), None)
            if origin_id is None:
                return False
            origin = self._connections.get(origin_id)
            if origin is None:
                return False
            return origin.outbox.offer(envelope)

    async def pending_routes(self) -> int:
        async with self._lock:
            return len(self._routes)

    async def close_all(self) -> int:
        """Drop every connection. Used at shutdown."""
        async with self._lock:
            closed = len(self._connections)
            for conn in self._connections.values():
                conn.outbox.close()
            self._connections.clear()
            self._routes.clear()
        return closed
