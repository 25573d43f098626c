"""Reconnecting websocket client for remote control telemetry."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp
from pydantic import ValidationError

from rclink._constants import DEFAULT_REMOTE_URL, RECONNECT_DELAY_SECONDS
from rclink.models.control import ControlSample, RemoteControlPayload
from rclink.models.notifications import (
    Notification,
    NotificationKind,
    NotificationSource,
    NotifyCallback,
    discard,
)

_logger = logging.getLogger(__name__)

STATUS_CONNECTING = "..."
STATUS_CONNECTED = "ENGINE: ON"


class RemoteControlIngest:
    """Receive ``{"steering", "throttle", "brake"}`` samples from a websocket.

    Connects, reads until the peer closes or faults, waits
    ``reconnect_delay`` seconds and tries again, until :meth:`stop`.

    Usage::

        ingest = RemoteControlIngest(on_notify=handle)
        ingest.start()
        ...
        await ingest.stop()
    """

    def __init__(
        self,
        url: str = DEFAULT_REMOTE_URL,
        *,
        on_notify: NotifyCallback = discard,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = url
        self._on_notify = on_notify
        self._reconnect_delay = reconnect_delay
        self._external_session = session is not None
        self._http_session = session
        self._task: asyncio.Task[None] | None = None
        self._connected = False
        self._last_sample: ControlSample | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def last_sample(self) -> ControlSample | None:
        """Most recent successfully parsed sample."""
        return self._last_sample

    @property
    def last_raw(self) -> tuple[int | None, int | None, int | None]:
        """Last raw ``(steering, throttle, brake)``, for debug telemetry."""
        sample = self._last_sample
        if sample is None:
            return None, None, None
        return sample.steering_raw, sample.throttle_raw, sample.brake_raw

    def _status(self, message: str, **data: Any) -> None:
        self._on_notify(Notification.status(NotificationSource.REMOTE, message, **data))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="rclink-remote-ingest")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._connected = False
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    async def _run(self) -> None:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        session = self._http_session
        while True:
            self._status(STATUS_CONNECTING, connected=False)
            try:
                async with session.ws_connect(self._url) as ws:
                    self._connected = True
                    _logger.info("Remote control connected to %s", self._url)
                    self._status(STATUS_CONNECTED, connected=True)
                    await self._receive(ws)
                    _logger.info("Remote control peer closed")
            except (aiohttp.ClientError, OSError, TimeoutError) as exc:
                _logger.warning("Remote control connection failed: %s", exc)
                self._status(f"Error: {exc}", connected=False)
            finally:
                self._connected = False

            self._status(f"Reconnecting in {self._reconnect_delay:.0f} seconds...", connected=False)
            await asyncio.sleep(self._reconnect_delay)

    async def _receive(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self.process_message(msg.data)
            elif msg.type == aiohttp.WSMsgType.BINARY:
                self.process_message(msg.data.decode("utf-8", errors="replace"))
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise aiohttp.ClientError(f"websocket error: {ws.exception()}")

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def process_message(self, message: str) -> ControlSample | None:
        """Decode one JSON message and publish the normalized sample.

        A message that fails to decode is reported as ``Parse error: ...``
        and leaves the last good sample in place.
        """
        try:
            decoded = json.loads(message)
            if not isinstance(decoded, dict):
                raise ValueError(f"expected a JSON object, got {type(decoded).__name__}")
            payload = RemoteControlPayload.model_validate(decoded)
        except (ValueError, ValidationError) as exc:
            _logger.debug("Remote control parse error: %s", exc)
            self._status(f"Parse error: {exc}")
            return None

        sample = payload.to_sample()
        self._last_sample = sample
        self._on_notify(
            Notification(
                kind=NotificationKind.CONTROL,
                source=NotificationSource.REMOTE,
                data={"sample": sample},
            )
        )
        return sample
