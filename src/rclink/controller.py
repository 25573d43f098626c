"""Ground-station controller: component wiring and party-mode logic."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import threading
import time
from collections.abc import Callable
from typing import Any

import aiohttp

from rclink._redact import redact_for_log, redact_token
from rclink.arbiter import ControlArbiter
from rclink.config import DriveSettings, RcLinkConfig
from rclink.hub import BroadcastHub
from rclink.inputs import LocalInputProvider
from rclink.models.control import ControlSample
from rclink.models.events import (
    BroadcastEvent,
    EventClock,
    PartySessionEvent,
    PartyStateEvent,
    PartyStateReason,
    SessionAction,
)
from rclink.models.notifications import Notification, NotificationKind, NotificationSource
from rclink.remote import RemoteControlIngest
from rclink.scanner import ScannerIngest
from rclink.serial_link import SerialFactory, SerialLink, open_serial
from rclink.session import SessionGate
from rclink.settings import Settings, SettingsFile

_logger = logging.getLogger(__name__)

SIMULATED_SOURCE = "simulated"


def member_from_token(payload: str) -> str | None:
    """Member name carried by a JSON token (``member`` or ``name`` field)."""
    try:
        decoded = json.loads(payload)
    except ValueError:
        return None
    if not isinstance(decoded, dict):
        return None
    for key in ("member", "name"):
        value = decoded.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class GroundStationController:
    """Owns every component and routes their notifications.

    All component notifications funnel into one :class:`asyncio.Queue`
    consumed by a single dispatcher task, so party-mode decisions and hub
    publishes happen on the event loop in arrival order.

    Usage::

        async with GroundStationController(RcLinkConfig.from_env()) as controller:
            await controller.run_forever()

    Parameters
    ----------
    config : RcLinkConfig
        Static configuration.
    settings_file : SettingsFile, optional
        Persistence provider. When given, persisted values are folded into
        *config* and toggles are written back.
    serial_factory : callable
        Opens serial handles for both the ground station and the scanner.
    on_notification : callable, optional
        Receives every notification after the controller has handled it.
    on_event : callable, optional
        Receives every broadcast event alongside the hub.
    local_input : LocalInputProvider, optional
        Polled by the arbiter while remote ingest is disabled.
    http_session : aiohttp.ClientSession, optional
        Session used by remote ingest.
    serve_hub : bool
        Bind the websocket hub. Tests turn this off and observe *on_event*.
    auto_connect : bool
        Open the configured serial and scanner ports on entry.
    clock : callable
        Monotonic clock for the session gate and scan debounce.
    """

    def __init__(
        self,
        config: RcLinkConfig,
        *,
        settings_file: SettingsFile | None = None,
        serial_factory: SerialFactory = open_serial,
        on_notification: Callable[[Notification], None] | None = None,
        on_event: Callable[[BroadcastEvent], None] | None = None,
        local_input: LocalInputProvider | None = None,
        http_session: aiohttp.ClientSession | None = None,
        serve_hub: bool = True,
        auto_connect: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings_file = settings_file
        self._settings: Settings | None = None
        drive: DriveSettings | None = None
        if settings_file is not None:
            self._settings = settings_file.load()
            config = self._settings.apply_to(config)
            drive = self._settings.drive_settings(config)

        self._config = config
        self._drive = drive or config.drive_settings()
        self._any_qr = config.any_qr
        self._allowed_tokens = frozenset(config.allowed_tokens)
        self._on_notification = on_notification
        self._on_event = on_event
        self._serve_hub = serve_hub
        self._auto_connect = auto_connect
        self._event_clock = EventClock()

        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: int | None = None
        self._queue: asyncio.Queue[Notification] | None = None
        self._dispatcher: asyncio.Task[None] | None = None
        self._arbiter_task: asyncio.Task[None] | None = None

        self._link = SerialLink(on_notify=self._notify, serial_factory=serial_factory)
        self._scanner = ScannerIngest(
            on_notify=self._notify,
            serial_factory=serial_factory,
            debounce_window_ms=config.debounce_window_ms,
            idle_flush=config.scanner_idle_flush,
            clock=clock,
        )
        self._gate = SessionGate(config.session_seconds, on_notify=self._notify, clock=clock)
        self._hub = BroadcastHub(
            config.hub_host,
            config.hub_port,
            config.hub_path,
            close_timeout=config.hub_close_timeout,
            send_timeout=config.hub_send_timeout,
        )
        self._remote = RemoteControlIngest(
            config.remote_url,
            on_notify=self._notify,
            reconnect_delay=config.reconnect_delay,
            session=http_session,
        )
        self._arbiter = ControlArbiter(
            self._link,
            self._gate,
            self._publish,
            on_notify=self._notify,
            local_input=local_input,
            event_clock=self._event_clock,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> RcLinkConfig:
        return self._config

    @property
    def drive_settings(self) -> DriveSettings:
        return self._drive

    @property
    def settings(self) -> Settings | None:
        return self._settings

    @property
    def link(self) -> SerialLink:
        return self._link

    @property
    def scanner(self) -> ScannerIngest:
        return self._scanner

    @property
    def gate(self) -> SessionGate:
        return self._gate

    @property
    def hub(self) -> BroadcastHub:
        return self._hub

    @property
    def remote(self) -> RemoteControlIngest:
        return self._remote

    @property
    def arbiter(self) -> ControlArbiter:
        return self._arbiter

    @property
    def any_qr(self) -> bool:
        return self._any_qr

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> GroundStationController:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        if self._loop is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        self._queue = asyncio.Queue()
        self._dispatcher = self._loop.create_task(self._dispatch_loop(), name="rclink-dispatcher")

        if self._serve_hub:
            try:
                await self._hub.start()
            except OSError as exc:
                _logger.error("Event hub could not bind %s:%d: %s", self._config.hub_host, self._config.hub_port, exc)
                self._notify(Notification.status(NotificationSource.HUB, f"Hub error: {exc}"))
        else:
            self._hub.start_sender()

        if self._drive.remote_enabled:
            self._remote.start()

        self._arbiter_task = self._loop.create_task(
            self._arbiter.run(lambda: self._drive, self._config.transmit_interval),
            name="rclink-arbiter",
        )

        if self._auto_connect:
            if self._config.serial_port:
                await self.connect_serial()
            if self._config.scanner_port:
                await self.connect_scanner()

        self.publish_party_state(PartyStateReason.STARTUP)
        _logger.info("Controller started")

    async def stop(self) -> None:
        if self._loop is None:
            return
        arbiter_task = self._arbiter_task
        self._arbiter_task = None
        if arbiter_task is not None:
            arbiter_task.cancel()
            try:
                await arbiter_task
            except asyncio.CancelledError:
                pass

        await self._remote.stop()
        await self._gate.aclose()
        await asyncio.to_thread(self._link.disconnect)
        await asyncio.to_thread(self._scanner.disconnect)
        await self._hub.stop()

        dispatcher = self._dispatcher
        self._dispatcher = None
        if dispatcher is not None:
            dispatcher.cancel()
            try:
                await dispatcher
            except asyncio.CancelledError:
                pass
        self._queue = None
        self._loop = None
        _logger.info("Controller stopped")

    async def run_forever(self) -> None:
        await asyncio.Event().wait()

    async def drain(self) -> None:
        """Wait until pending notifications and broadcasts are processed."""
        await asyncio.sleep(0)
        if self._queue is not None:
            await self._queue.join()
        await self._hub.drain()

    # ------------------------------------------------------------------
    # Notification channel
    # ------------------------------------------------------------------

    def _notify(self, notification: Notification) -> None:
        """Entry point for every component; safe from any thread."""
        loop = self._loop
        queue = self._queue
        if loop is None or queue is None:
            _logger.debug("Controller not running; dropping %s notification", notification.kind)
            return
        if threading.get_ident() == self._loop_thread:
            queue.put_nowait(notification)
        else:
            loop.call_soon_threadsafe(queue.put_nowait, notification)

    async def _dispatch_loop(self) -> None:
        queue = self._queue
        assert queue is not None
        while True:
            notification = await queue.get()
            try:
                self._handle(notification)
            except Exception:
                _logger.warning("Handling %s notification failed", notification.kind, exc_info=True)
            finally:
                queue.task_done()

    def _handle(self, notification: Notification) -> None:
        kind = notification.kind
        if kind == NotificationKind.CONTROL:
            sample = notification.data.get("sample")
            if isinstance(sample, ControlSample) and self._drive.remote_enabled:
                self._arbiter.update_remote(sample)
        elif kind == NotificationKind.QR_SCANNED:
            payload = str(notification.data.get("payload", ""))
            self._authorize(payload, str(notification.data.get("source") or notification.source))
        elif kind == NotificationKind.SESSION:
            self._on_session(notification)
        elif kind == NotificationKind.STATUS:
            _logger.info("[%s] %s", notification.source, notification.message)
            if notification.source == NotificationSource.SCANNER and "connected" in notification.data:
                self.publish_party_state(PartyStateReason.SCANNER)
        elif kind == NotificationKind.ACK:
            _logger.debug("[%s] ack %s", notification.source, notification.message)
        elif kind == NotificationKind.TRANSMISSION_ERROR:
            _logger.warning("[%s] %s", notification.source, notification.message)

        if self._on_notification is not None:
            try:
                self._on_notification(notification)
            except Exception:
                _logger.debug("on_notification callback failed", exc_info=True)

    def _publish(self, event: BroadcastEvent) -> None:
        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("Publish %s", redact_for_log(event.to_wire()))
        self._hub.publish(event)
        if self._on_event is not None:
            try:
                self._on_event(event)
            except Exception:
                _logger.debug("on_event callback failed", exc_info=True)

    # ------------------------------------------------------------------
    # Party mode
    # ------------------------------------------------------------------

    def party_state(self, reason: PartyStateReason) -> PartyStateEvent:
        return PartyStateEvent(
            ts=self._event_clock.now_ms(),
            reason=reason,
            mode_enabled=self._drive.gating_enabled,
            session_active=self._gate.is_active,
            remaining_ms=self._gate.remaining_ms,
            any_qr=self._any_qr,
            scanner_connected=self._scanner.is_connected,
            scanner_port=self._scanner.port if self._scanner.is_connected else None,
            debug_enabled=self._drive.debug_enabled,
        )

    def publish_party_state(self, reason: PartyStateReason) -> None:
        self._publish(self.party_state(reason))

    def _authorize(self, payload: str, source: str) -> bool:
        if not payload:
            return False
        if not self._drive.gating_enabled:
            _logger.info("Scan %s ignored; party mode is off", redact_token(payload))
            return False
        if not self._any_qr and payload not in self._allowed_tokens:
            _logger.info("Scan %s rejected", redact_token(payload))
            self.publish_party_state(PartyStateReason.QR_REJECTED)
            return False
        self._gate.start_session(member=member_from_token(payload), qr_payload=payload, source=source)
        return True

    def _on_session(self, notification: Notification) -> None:
        data = notification.data
        action = SessionAction(data["action"])
        self._publish(
            PartySessionEvent(
                ts=self._event_clock.now_ms(),
                action=action,
                member=data.get("member"),
                qr_payload=data.get("qr_payload"),
                source=data.get("source"),
                session_seconds=int(data.get("session_seconds", self._gate.duration)),
                remaining_ms=int(data.get("remaining_ms", 0)),
                session_active=action != SessionAction.ENDED,
                mode_enabled=self._drive.gating_enabled,
            )
        )
        if action == SessionAction.STARTED:
            self.publish_party_state(PartyStateReason.SESSION_STARTED)
        elif action == SessionAction.ENDED:
            self.publish_party_state(PartyStateReason.SESSION_ENDED)

    def simulate_scan(self, payload: str) -> bool:
        """Authorize *payload* as if it had been scanned."""
        return self._authorize(payload.strip(), SIMULATED_SOURCE)

    def start_session(self) -> None:
        self._gate.start_session(source=SIMULATED_SOURCE)

    def stop_session(self) -> bool:
        return self._gate.stop_session()

    # ------------------------------------------------------------------
    # Toggles
    # ------------------------------------------------------------------

    def _persist(self, **updates: Any) -> None:
        if self._settings_file is None or self._settings is None:
            return
        self._settings = self._settings_file.save(self._settings, **updates)

    def set_party_mode(self, enabled: bool) -> None:
        self._drive = dataclasses.replace(self._drive, gating_enabled=enabled)
        if not enabled:
            self._gate.stop_session()
        self._persist(party_mode=enabled)
        self.publish_party_state(PartyStateReason.MODE)

    def set_any_qr(self, enabled: bool) -> None:
        self._any_qr = enabled
        self._persist(any_qr=enabled)
        self.publish_party_state(PartyStateReason.ANY_QR)

    def set_debug(self, enabled: bool) -> None:
        self._drive = dataclasses.replace(self._drive, debug_enabled=enabled)
        self._arbiter.reset_broadcast()
        self._persist(debug_enabled=enabled)
        self.publish_party_state(PartyStateReason.DEBUG)

    def update_drive(
        self,
        *,
        reverse_steering: bool | None = None,
        reverse_throttle: bool | None = None,
        steering_offset: int | None = None,
    ) -> DriveSettings:
        changes: dict[str, Any] = {}
        if reverse_steering is not None:
            changes["reverse_steering"] = reverse_steering
        if reverse_throttle is not None:
            changes["reverse_throttle"] = reverse_throttle
        if steering_offset is not None:
            changes["steering_offset"] = int(steering_offset)
        if changes:
            self._drive = dataclasses.replace(self._drive, **changes)
            self._persist(**changes)
        return self._drive

    async def set_remote_enabled(self, enabled: bool) -> None:
        """Toggle remote ingest; before :meth:`start` this only sets the toggle."""
        self._drive = dataclasses.replace(self._drive, remote_enabled=enabled)
        if not enabled:
            await self._remote.stop()
        elif self._loop is not None:
            self._remote.start()
        self._persist(websocket_enabled=enabled)

    # ------------------------------------------------------------------
    # Serial devices
    # ------------------------------------------------------------------

    async def connect_serial(self, port: str | None = None, baud: int | None = None) -> tuple[bool, str | None]:
        port = port or self._config.serial_port or ""
        baud = baud or self._config.baud
        ok, err = await asyncio.to_thread(self._link.connect, port, baud)
        if ok:
            self._persist(port=port, baud=str(baud))
        return ok, err

    async def disconnect_serial(self) -> None:
        await asyncio.to_thread(self._link.disconnect)

    async def connect_scanner(self, port: str | None = None, baud: int | None = None) -> tuple[bool, str | None]:
        port = port or self._config.scanner_port or ""
        baud = baud or self._config.scanner_baud
        ok, err = await asyncio.to_thread(self._scanner.connect, port, baud)
        if ok:
            self._persist(scanner_port=port)
        return ok, err

    async def disconnect_scanner(self) -> None:
        await asyncio.to_thread(self._scanner.disconnect)

    def set_mac_range(self, start: int, end: int) -> bool:
        """Send ``MACLIST``; raises :class:`~rclink.exceptions.DirectiveError`."""
        sent = self._link.set_mac_range(start, end)
        self._persist(start_index=start, end_index=end)
        return sent

    def select_mac(self, index: int) -> bool:
        return self._link.select_mac(index)

    def query_active_mac(self) -> bool:
        return self._link.query_active_mac()
