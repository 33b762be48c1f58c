"""
Command routing for the control plane.

A connection starts unclassified and must say Hello, naming its role,
before anything else. Controllers then issue Reload (broadcast to every
client) and Echo (relayed to one client, whose Echo reply is routed back
by correlation id). Clients answer Echo requests. Ping and NoOperation
are answered directly.
"""

from typing import Union

import structlog

from liveserver.errors import ProtocolError
from liveserver.protocol import (
    CommandEnvelope,
    Echo,
    EchoResult,
    Hello,
    HelloResult,
    NoOperation,
    NoOperationResult,
    Ping,
    PingResult,
    Reload,
    ReloadResult,
    ResultEnvelope,
    Unknown,
    decode_command,
)
from liveserver.registry import Connection, ConnectionRegistry, Role

logger = structlog.get_logger(__name__)

ROLES = {
    Role.CONTROLLER.value: Role.CONTROLLER,
    Role.CLIENT.value: Role.CLIENT,
}


class CommandRouter:
    """Dispatches decoded envelopes for every connection."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry
        self._handlers = {
            NoOperation: self._on_no_operation,
            Hello: self._on_hello,
            Reload: self._on_reload,
            Ping: self._on_ping,
            Echo: self._on_echo,
        }

    async def handle_frame(self, conn: Connection, text: Union[str, bytes]) -> None:
        """Decode and dispatch one text frame. Raises ProtocolError."""
        await self.dispatch(conn, decode_command(text))

    async def dispatch(self, conn: Connection, envelope: CommandEnvelope) -> None:
        payload = envelope.payload

        if isinstance(payload, Unknown):
            logger.info("Unrecognized command", connection_id=conn.id, tag=payload.tag)
            self._reply(conn, ResultEnvelope.reply_to(envelope, NoOperationResult()))
            return

        if not conn.classified and not isinstance(payload, Hello):
            raise ProtocolError(f"{payload.TAG} before Hello")

        handler = self._handlers[type(payload)]
        await handler(conn, envelope)

    def _reply(self, conn: Connection, result: ResultEnvelope) -> None:
        if not conn.outbox.offer(result):
            logger.warning(
                "Dropped reply",
                connection_id=conn.id,
                correlation_id=result.correlation_id,
                payload=result.payload.TAG,
            )

    async def _on_no_operation(self, conn: Connection, envelope: CommandEnvelope) -> None:
        self._reply(conn, ResultEnvelope.reply_to(envelope, NoOperationResult()))

    async def _on_hello(self, conn: Connection, envelope: CommandEnvelope) -> None:
        if conn.classified:
            raise ProtocolError(f"Connection {conn.id} is already classified as {conn.role.value}")

        role_name = envelope.payload.role_name
        role = ROLES.get(role_name.lower())
        if role is None:
            raise ProtocolError(f"Unknown role {role_name!r}")

        if not await self.registry.classify(conn.id, role):
            raise ProtocolError(f"Connection {conn.id} cannot be classified")

        logger.info("Connection classified", connection_id=conn.id, role=role.value, actor_id=envelope.actor_id)
        self._reply(conn, ResultEnvelope.reply_to(envelope, HelloResult(assigned_id=conn.id)))

    async def _on_ping(self, conn: Connection, envelope: CommandEnvelope) -> None:
        conn.heartbeat.beat()
        self._reply(conn, ResultEnvelope.reply_to(envelope, PingResult()))

    async def _on_reload(self, conn: Connection, envelope: CommandEnvelope) -> None:
        if conn.role is not Role.CONTROLLER:
            self._reply(conn, ResultEnvelope.reply_to(envelope, NoOperationResult()))
            return

        delivered = await self.registry.broadcast(Role.CLIENT, ResultEnvelope.reply_to(envelope, ReloadResult()))
        logger.info("Reload broadcast", connection_id=conn.id, correlation_id=envelope.correlation_id, clients=delivered)
        self._reply(conn, ResultEnvelope.reply_to(envelope, ReloadResult()))

    async def _on_echo(self, conn: Connection, envelope: CommandEnvelope) -> None:
        payload = envelope.payload

        if conn.role is Role.CONTROLLER:
            forwarded = ResultEnvelope.reply_to(envelope, EchoResult(
                target_id=payload.target_id,
                from_id=envelope.actor_id,
                message=payload.message,
            ))
            if not await self.registry.relay(payload.target_id, forwarded, origin_id=conn.id):
                logger.info(
                    "Echo target unavailable",
                    connection_id=conn.id,
                    target_id=payload.target_id,
                    correlation_id=envelope.correlation_id,
                )
                self._reply(conn, ResultEnvelope.reply_to(envelope, NoOperationResult()))
            return

        # A client's Echo answers a relayed request.
        answer = ResultEnvelope.reply_to(envelope, EchoResult(
            target_id=conn.id,
            from_id=envelope.actor_id,
            message=payload.message,
        ))
        if not await self.registry.route_reply(conn.id, answer):
            logger.info("Echo reply has no pending request", connection_id=conn.id, correlation_id=envelope.correlation_id)
            self._reply(conn, ResultEnvelope.reply_to(envelope, NoOperationResult()))
