"""
HTTP and WebSocket server.

Serves files below the configured root, injecting the live-reload client
into HTML pages, and hosts the control plane on ``CONTROL_ROUTE``.
"""

import asyncio
import contextlib
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Set

import structlog
from aiohttp import WSCloseCode, WSMsgType, web
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from liveserver.config import Settings
from liveserver.errors import NotFoundError, ProtocolError
from liveserver.heartbeat import HeartbeatMonitor, HeartbeatState
from liveserver.protocol import ReloadResult, ResultEnvelope
from liveserver.registry import Connection, ConnectionRegistry, Outbox, Role
from liveserver.resolver import DEFAULT_SCRIPT_PATH, ContentResolver
from liveserver.router import CommandRouter

logger = structlog.get_logger(__name__)

CONTROL_ROUTE = "/__ws"
SCRIPT_ROUTE = DEFAULT_SCRIPT_PATH
RELOAD_JS = (Path(__file__).parent / "static" / "livereload.js").read_text(encoding="utf-8")

NOT_FOUND_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>404 Not Found</title></head>
<body><h1>404 Not Found</h1><p>The requested file does not exist.</p></body>
</html>
"""

WATCHED_EVENTS = frozenset({"created", "modified", "moved", "deleted"})

# Close frame reasons are limited to 123 bytes
MAX_CLOSE_REASON = 120


# -------- File watcher --------
class Watcher(FileSystemEventHandler):
    """
    Broadcasts Reload once changes under root settle.

    Every event re-arms a ``debounce`` timer on the loop, so a burst of
    writes gives one Reload carrying the last changed path.
    """

    def __init__(self, server: "LiveServer", loop: asyncio.AbstractEventLoop, debounce: float):
        self.server = server
        self.loop = loop
        self.debounce = debounce
        self._timer: Optional[asyncio.TimerHandle] = None
        self._reload: Optional[asyncio.Task] = None

    def on_any_event(self, event):
        if event.is_directory or event.event_type not in WATCHED_EVENTS:
            return

        path = event.src_path
        if isinstance(path, bytes):
            path = path.decode("utf-8", "replace")
        # Called on the observer thread
        self.loop.call_soon_threadsafe(self._arm, path)

    def _arm(self, path: str) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self.loop.call_later(self.debounce, self._fire, path)

    def _fire(self, path: str) -> None:
        self._timer = None
        self._reload = self.loop.create_task(self.server.send_reload(path))

    def cancel(self) -> None:
        """Drop a pending reload. Call on the loop."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class LiveServer:
    """Owns the aiohttp application and everything shared by its handlers."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.registry = ConnectionRegistry()
        self.router = CommandRouter(self.registry)
        self.executor = ThreadPoolExecutor(max_workers=settings.workers, thread_name_prefix="liveserver-io")
        self.resolver = ContentResolver(
            settings.root,
            script_path=SCRIPT_ROUTE,
            inject=settings.inject,
            executor=self.executor,
        )
        self.websockets: Set[web.WebSocketResponse] = set()
        self.observer: Optional[Observer] = None
        self.watcher: Optional[Watcher] = None
        self._reload_id = 0

        self.app = web.Application()
        self.app.on_startup.append(self._on_startup)
        self.app.on_shutdown.append(self._on_shutdown)
        self.app.on_cleanup.append(self._on_cleanup)
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get(CONTROL_ROUTE, self.websocket_handler)
        self.app.router.add_get(SCRIPT_ROUTE, self.script_handler)
        self.app.router.add_get("/{path:.*}", self.file_handler)

    # -------- Lifecycle --------
    async def _on_startup(self, app: web.Application) -> None:
        if self.settings.watch:
            self.watcher = Watcher(self, asyncio.get_running_loop(), self.settings.reload_debounce)
            self.observer = Observer()
            self.observer.schedule(self.watcher, str(self.resolver.root), recursive=True)
            self.observer.start()
            logger.info("Watching for changes", root=str(self.resolver.root))

    async def _on_shutdown(self, app: web.Application) -> None:
        for ws in list(self.websockets):
            await ws.close(code=WSCloseCode.GOING_AWAY, message=b"server shutdown")

    async def _on_cleanup(self, app: web.Application) -> None:
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()
            self.observer = None
        if self.watcher is not None:
            self.watcher.cancel()
            self.watcher = None
        closed = await self.registry.close_all()
        self.executor.shutdown(wait=False)
        logger.info("Live server stopped", connections_closed=closed)

    async def send_reload(self, path: str = "") -> int:
        """Server-originated Reload for every client."""
        self._reload_id += 1
        envelope = ResultEnvelope(
            correlation_id=self._reload_id,
            actor_id=0,
            from_address=self.settings.host,
            from_port=self.settings.port,
            payload=ReloadResult(),
        )
        delivered = await self.registry.broadcast(Role.CLIENT, envelope)
        logger.info("File changed, reloading", path=path, clients=delivered)
        return delivered

    # -------- HTTP handlers --------
    async def script_handler(self, request: web.Request) -> web.Response:
        return web.Response(text=RELOAD_JS, content_type="application/javascript")

    async def file_handler(self, request: web.Request) -> web.Response:
        path = request.match_info.get("path", "")
        inject = "raw" not in request.query

        try:
            resolved = await self.resolver.resolve(path, inject=inject)
        except NotFoundError:
            logger.info("Not found", path=path)
            return web.Response(status=404, text=NOT_FOUND_PAGE, content_type="text/html")

        # Injected pages are re-encoded as UTF-8
        return web.Response(
            body=resolved.body,
            content_type=resolved.content_type,
            charset="utf-8" if resolved.injected else None,
            headers={"Cache-Control": "no-cache"},
        )

    # -------- WebSocket --------
    async def websocket_handler(self, request: web.Request) -> web.WebSocketResponse:
        # Pings and pongs are handled here so they count as heartbeats.
        ws = web.WebSocketResponse(autoping=False)
        await ws.prepare(request)

        peer = request.transport.get_extra_info("peername") if request.transport else None
        address, port = (peer[0], peer[1]) if isinstance(peer, tuple) else (request.remote or "", 0)

        conn = Connection(
            peer_address=address,
            peer_port=port,
            outbox=Outbox(self.settings.outbox_size),
            heartbeat=HeartbeatMonitor(self.settings.heartbeat_interval, self.settings.heartbeat_timeout),
        )
        await self.registry.register(conn)
        log = logger.bind(connection_id=conn.id, peer=f"{address}:{port}")
        log.info("WebSocket connected", total=len(self.registry))

        self.websockets.add(ws)
        writer = asyncio.create_task(self._write_outbox(ws, conn))
        try:
            await self._serve_connection(ws, conn)
        except ProtocolError as e:
            log.warning("Protocol error, closing", error=str(e))
            reason = str(e).encode("utf-8")[:MAX_CLOSE_REASON]
            await ws.close(code=WSCloseCode.PROTOCOL_ERROR, message=reason)
        except ConnectionError as e:
            log.info("WebSocket connection lost", error=str(e))
        finally:
            self.websockets.discard(ws)
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer
            if await self.registry.deregister(conn.id):
                log.info("WebSocket disconnected", total=len(self.registry))
            if not ws.closed:
                await ws.close()

        return ws

    async def _serve_connection(self, ws: web.WebSocketResponse, conn: Connection) -> None:
        """
        Drive one connection until it closes.

        The next inbound frame and the heartbeat check are awaited together;
        the receive stays pending across heartbeat ticks and is never
        cancelled mid-frame.
        """
        heartbeat = conn.heartbeat
        receive: Optional[asyncio.Task] = None
        try:
            while True:
                wait = heartbeat.seconds_until_check()
                if wait <= 0:
                    if heartbeat.check() is HeartbeatState.TIMED_OUT:
                        logger.info("Heartbeat timed out", connection_id=conn.id, idle=round(heartbeat.idle_for(), 3))
                        await ws.close(code=WSCloseCode.OK, message=b"heartbeat timeout")
                        return
                    await ws.ping()
                    continue

                if receive is None:
                    receive = asyncio.ensure_future(ws.receive())
                done, _ = await asyncio.wait({receive}, timeout=wait)
                if not done:
                    continue

                msg = receive.result()
                receive = None

                if msg.type == WSMsgType.TEXT:
                    heartbeat.beat()
                    await self.router.handle_frame(conn, msg.data)
                elif msg.type == WSMsgType.PONG:
                    heartbeat.beat()
                elif msg.type == WSMsgType.PING:
                    heartbeat.beat()
                    await ws.pong(msg.data)
                elif msg.type == WSMsgType.BINARY:
                    raise ProtocolError("Binary frames are not supported")
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("WebSocket error", connection_id=conn.id, error=str(ws.exception()))
                    return
                else:
                    # CLOSE, CLOSING, CLOSED
                    return
        finally:
            if receive is not None and not receive.done():
                receive.cancel()

    async def _write_outbox(self, ws: web.WebSocketResponse, conn: Connection) -> None:
        while True:
            envelope = await conn.outbox.get()
            if envelope is None or ws.closed:
                return
            try:
                await ws.send_str(envelope.encode())
            except ConnectionError as e:
                logger.info("Send failed", connection_id=conn.id, error=str(e))
                return


def create_app(settings: Settings) -> web.Application:
    """Build the aiohttp application for ``settings``."""
    return LiveServer(settings).app


def run(settings: Settings) -> None:
    """Serve until interrupted."""
    app = create_app(settings)
    logger.info(
        "Live server running",
        url=f"http://{settings.host}:{settings.port}",
        root=str(Path(settings.root).resolve()),
        inject=settings.inject,
    )
    web.run_app(app, host=settings.host, port=settings.port, print=None)
