"""
Controller side of the control plane.

Connects to a running server, says Hello as a controller and issues
commands. Replies are matched to requests by correlation id, so several
requests may be outstanding at once and answered in any order.
"""

import asyncio
import itertools
import random
from typing import Dict, Optional

import aiohttp
import structlog

from liveserver.errors import ProtocolError
from liveserver.protocol import (
    JS_SAFE_INTEGER_MAX,
    U32_MAX,
    CommandEnvelope,
    Echo,
    Hello,
    HelloResult,
    Ping,
    Reload,
    ResultEnvelope,
    Variant,
    decode_result,
)
from liveserver.registry import Role

logger = structlog.get_logger(__name__)

DEFAULT_URL = "ws://127.0.0.1:8000/__ws"


class ControllerClient:
    """
    Async context manager speaking the control protocol as a controller.

        async with ControllerClient(url) as controller:
            await controller.reload()
    """

    def __init__(self, url: str = DEFAULT_URL, timeout: float = 5.0, actor_id: Optional[int] = None):
        self.url = url
        self.timeout = timeout
        self.actor_id = random.randint(1, U32_MAX) if actor_id is None else actor_id
        self.assigned_id: Optional[int] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._correlation_ids = itertools.count(1)
        self._address = ("127.0.0.1", 0)

    async def __aenter__(self) -> "ControllerClient":
        try:
            await self.connect()
        except (aiohttp.ClientError, ProtocolError, ConnectionError, asyncio.TimeoutError):
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def connect(self) -> int:
        """Open the socket and classify as controller. Returns the assigned id."""
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(self.url)
        except aiohttp.ClientError:
            await self._session.close()
            self._session = None
            raise
        sockname = self._ws.get_extra_info("sockname")
        if isinstance(sockname, tuple):
            self._address = (sockname[0], sockname[1])
        self._reader = asyncio.create_task(self._read())

        result = await self.request(Hello(role_name=Role.CONTROLLER.value))
        if not isinstance(result.payload, HelloResult):
            raise ProtocolError(f"Expected Hello result, got {result.payload.TAG}")
        self.assigned_id = result.payload.assigned_id
        logger.debug("Controller classified", assigned_id=self.assigned_id)
        return self.assigned_id

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
        if self._reader is not None:
            await self._reader
        if self._session is not None:
            await self._session.close()
        self._ws = self._session = self._reader = None

    def _new_correlation_id(self) -> int:
        # Browsers echo the id back through a double, so stay exact there.
        correlation_id = next(self._correlation_ids)
        if correlation_id > JS_SAFE_INTEGER_MAX:
            self._correlation_ids = itertools.count(1)
            correlation_id = next(self._correlation_ids)
        return correlation_id

    async def request(self, payload: Variant) -> ResultEnvelope:
        """Send one command and wait for the result with its correlation id."""
        if self._ws is None:
            raise RuntimeError("Controller is not connected")

        correlation_id = self._new_correlation_id()
        envelope = CommandEnvelope(
            correlation_id=correlation_id,
            actor_id=self.actor_id,
            from_address=self._address[0],
            from_port=self._address[1],
            payload=payload,
        )
        future = asyncio.get_running_loop().create_future()
        self._pending[correlation_id] = future
        try:
            await self._ws.send_str(envelope.encode())
            return await asyncio.wait_for(future, self.timeout)
        finally:
            self._pending.pop(correlation_id, None)

    async def _read(self) -> None:
        async for msg in self._ws:
            if msg.type != aiohttp.WSMsgType.TEXT:
                continue
            try:
                result = decode_result(msg.data)
            except ProtocolError as e:
                logger.warning("Ignoring malformed result", error=str(e))
                continue
            future = self._pending.get(result.correlation_id)
            if future is not None and not future.done():
                future.set_result(result)
            else:
                logger.debug("Unmatched result", correlation_id=result.correlation_id)

        closed = ConnectionError(f"Connection closed ({self._ws.close_code})")
        for future in self._pending.values():
            if not future.done():
                future.set_exception(closed)

    async def ping(self) -> ResultEnvelope:
        return await self.request(Ping())

    async def reload(self) -> ResultEnvelope:
        """Ask the server to reload every connected client."""
        return await self.request(Reload())

    async def echo(self, target_id: int, message: str) -> ResultEnvelope:
        """Send ``message`` to client ``target_id`` and wait for its echo."""
        return await self.request(Echo(target_id=target_id, message=message))
