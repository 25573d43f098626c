"""Websocket event broadcast hub.

Dashboards connect to a single path and receive every published event as
one JSON text message. There is no inbound protocol; anything a subscriber
sends is ignored.
"""

from __future__ import annotations

import asyncio
import logging
import threading

from aiohttp import WSMsgType, web

from rclink._constants import (
    DEFAULT_HUB_HOST,
    DEFAULT_HUB_PATH,
    DEFAULT_HUB_PORT,
    HUB_CLOSE_TIMEOUT_SECONDS,
    HUB_SEND_TIMEOUT_SECONDS,
)
from rclink.models.events import BroadcastEvent

_logger = logging.getLogger(__name__)


class BroadcastHub:
    """Fan-out of JSON events to websocket subscribers.

    Parameters
    ----------
    host, port, path : str, int, str
        Listen address and websocket path.
    close_timeout : float
        Upper bound per subscriber when :meth:`stop` closes connections.
    send_timeout : float
        Upper bound per subscriber write; a subscriber that exceeds it is
        dropped and closed.
    """

    def __init__(
        self,
        host: str = DEFAULT_HUB_HOST,
        port: int = DEFAULT_HUB_PORT,
        path: str = DEFAULT_HUB_PATH,
        *,
        close_timeout: float = HUB_CLOSE_TIMEOUT_SECONDS,
        send_timeout: float = HUB_SEND_TIMEOUT_SECONDS,
    ) -> None:
        self._host = host
        self._port = port
        self._path = path if path.startswith("/") else "/" + path
        self._close_timeout = close_timeout
        self._send_timeout = send_timeout
        self._subscribers: set[web.WebSocketResponse] = set()
        self._lock = threading.Lock()
        self._runner: web.AppRunner | None = None
        self._queue: asyncio.Queue[BroadcastEvent] | None = None
        self._sender: asyncio.Task[None] | None = None

    @property
    def path(self) -> str:
        return self._path

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(self._path, self._handle_subscriber)
        # Also accept the path without its trailing slash.
        alternate = self._path.rstrip("/")
        if alternate and alternate != self._path:
            app.router.add_get(alternate, self._handle_subscriber)
        return app

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._runner is not None:
            return
        runner = web.AppRunner(self.build_app(), shutdown_timeout=self._close_timeout)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        self.start_sender()
        _logger.info("Event hub listening on ws://%s:%d%s", self._host, self._port, self._path)

    def start_sender(self) -> None:
        """Start the ordered publish queue consumer."""
        if self._sender is not None and not self._sender.done():
            return
        self._queue = asyncio.Queue()
        self._sender = asyncio.get_running_loop().create_task(self._send_loop(), name="rclink-hub-sender")

    async def stop(self) -> None:
        sender = self._sender
        self._sender = None
        self._queue = None
        if sender is not None and not sender.done():
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass

        await self.close_subscribers()

        runner = self._runner
        self._runner = None
        if runner is not None:
            try:
                await runner.cleanup()
            except (OSError, RuntimeError):
                _logger.debug("Event hub cleanup failed", exc_info=True)
            _logger.info("Event hub stopped")

    async def close_subscribers(self) -> None:
        with self._lock:
            snapshot = list(self._subscribers)
            self._subscribers.clear()
        if snapshot:
            await asyncio.gather(*(self._close_one(ws) for ws in snapshot))

    async def _close_one(self, ws: web.WebSocketResponse) -> None:
        try:
            await asyncio.wait_for(ws.close(), self._close_timeout)
        except (TimeoutError, ConnectionError, RuntimeError):
            _logger.debug("Subscriber close did not complete", exc_info=True)

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    async def _handle_subscriber(self, request: web.Request) -> web.StreamResponse:
        ws = web.WebSocketResponse()
        if not ws.can_prepare(request).ok:
            return web.Response(status=400, text="WebSocket upgrade required")
        await ws.prepare(request)

        with self._lock:
            self._subscribers.add(ws)
            count = len(self._subscribers)
        _logger.info("Subscriber connected from %s (%d total)", request.remote, count)

        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    _logger.debug("Subscriber error: %s", ws.exception())
                    break
        finally:
            with self._lock:
                self._subscribers.discard(ws)
                count = len(self._subscribers)
            _logger.info("Subscriber disconnected (%d remaining)", count)
        return ws

    def _remove(self, ws: web.WebSocketResponse) -> None:
        with self._lock:
            self._subscribers.discard(ws)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def broadcast(self, event: BroadcastEvent) -> int:
        """Send *event* to every current subscriber.

        Returns the number of subscribers that received it. Subscribers
        joining during the call are not included.
        """
        text = event.to_json()
        with self._lock:
            snapshot = list(self._subscribers)
        if not snapshot:
            return 0
        results = await asyncio.gather(*(self._send_one(ws, text) for ws in snapshot))
        return sum(results)

    async def _send_one(self, ws: web.WebSocketResponse, text: str) -> bool:
        if ws.closed:
            self._remove(ws)
            return False
        try:
            await asyncio.wait_for(ws.send_str(text), self._send_timeout)
        except (TimeoutError, ConnectionError, RuntimeError) as exc:
            _logger.debug("Dropping subscriber after failed send: %s", exc)
            self._remove(ws)
            await self._close_one(ws)
            return False
        return True

    def publish(self, event: BroadcastEvent) -> None:
        """Queue *event* for ordered delivery; dropped if the hub is stopped."""
        queue = self._queue
        if queue is None:
            _logger.debug("Hub not running; dropping %s event", event.type)
            return
        queue.put_nowait(event)

    async def _send_loop(self) -> None:
        queue = self._queue
        assert queue is not None
        while True:
            event = await queue.get()
            try:
                await self.broadcast(event)
            except Exception:
                _logger.warning("Broadcast of %s event failed", event.type, exc_info=True)
            finally:
                queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued event has been broadcast."""
        if self._queue is not None:
            await self._queue.join()
