"""Ground-station serial link.

Owns one exclusive serial connection. Drive commands and directives are
written from the caller's thread under a write lock; inbound lines are read
on a daemon thread and reported as ``ack`` notifications. Transport faults
tear the link down and are reported, never raised across threads.
"""

from __future__ import annotations

import contextlib
import logging
import platform
import threading
from collections.abc import Callable
from typing import Any

import serial
import serial.tools.list_ports

from rclink import protocol
from rclink._constants import DISCONNECTED_TEXT, WAITING_TEXT
from rclink.exceptions import DirectiveError, ProtocolError, TransmissionError
from rclink.models.control import CommandFrame
from rclink.models.ground_station import (
    GroundStationDirective,
    QueryActiveMac,
    SelectMacIndex,
    SetMacRange,
    Unrecognized,
)
from rclink.models.notifications import (
    Notification,
    NotificationKind,
    NotificationSource,
    NotifyCallback,
    discard,
)

_logger = logging.getLogger(__name__)

SerialFactory = Callable[..., Any]

_MAX_LINE_BYTES = 4096


def port_name(port: str) -> str:
    """On Windows use ``\\\\.\\COMn`` so COM10 and above open reliably."""
    port = (port or "").strip()
    if not port:
        return port
    if platform.system() == "Windows":
        port_upper = port.upper()
        if port_upper.startswith("COM") and not port_upper.startswith("\\"):
            return "\\\\.\\" + port_upper
    return port


def open_serial(port: str, baud: int, *, timeout: float | None, write_timeout: float | None) -> Any:
    """Open a port or pyserial URL (``loop://``, ``socket://host:port``)."""
    return serial.serial_for_url(port_name(port), baudrate=baud, timeout=timeout, write_timeout=write_timeout)


def list_serial_ports() -> list[str]:
    return sorted(p.device for p in serial.tools.list_ports.comports())


class LineReader:
    """Splits a byte stream into ``\\n``-terminated lines."""

    def __init__(self, max_bytes: int = _MAX_LINE_BYTES) -> None:
        self._buf = bytearray()
        self._max_bytes = max_bytes

    def feed(self, chunk: bytes) -> list[str]:
        self._buf.extend(chunk)
        lines: list[str] = []
        while True:
            idx = self._buf.find(b"\n")
            if idx < 0:
                break
            raw = bytes(self._buf[:idx])
            del self._buf[: idx + 1]
            lines.append(raw.decode("ascii", errors="replace").strip())
        if len(self._buf) > self._max_bytes:
            _logger.debug("RX buffer overflow, cleared %d bytes", len(self._buf))
            self._buf.clear()
        return lines

    def clear(self) -> None:
        self._buf.clear()


class SerialLink:
    """One serial connection to the ground station."""

    def __init__(
        self,
        *,
        on_notify: NotifyCallback = discard,
        serial_factory: SerialFactory = open_serial,
        read_timeout: float = 0.05,
        write_timeout: float = 0.1,
    ) -> None:
        self._on_notify = on_notify
        self._serial_factory = serial_factory
        self._read_timeout = read_timeout
        self._write_timeout = write_timeout
        self._serial: Any | None = None
        self._port: str | None = None
        self._state_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._reader: threading.Thread | None = None
        self._running = threading.Event()
        self._mac_range: SetMacRange | None = None
        self._latest_frame = DISCONNECTED_TEXT
        self._latest_ack = WAITING_TEXT

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._serial is not None

    @property
    def port(self) -> str | None:
        return self._port

    @property
    def latest_frame(self) -> str:
        """Last command written, or ``(disconnected)``."""
        return self._latest_frame

    @property
    def latest_ack(self) -> str:
        return self._latest_ack

    @property
    def mac_range(self) -> SetMacRange | None:
        """Most recently applied MAC index range."""
        return self._mac_range

    def _notify(self, kind: NotificationKind, message: str, **data: Any) -> None:
        self._on_notify(Notification(kind=kind, source=NotificationSource.SERIAL, message=message, data=data))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self, port: str, baud: int) -> tuple[bool, str | None]:
        """Open *port* and start the line reader.

        Returns ``(True, None)`` on success, ``(False, error_text)`` otherwise.
        """
        self.disconnect()
        if not (port or "").strip():
            return False, "Port name is empty"
        try:
            handle = self._serial_factory(
                port,
                baud,
                timeout=self._read_timeout,
                write_timeout=self._write_timeout,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            _logger.warning("Ground station open failed port=%s: %s", port, exc)
            self._notify(NotificationKind.STATUS, f"Connection error: {exc}", connected=False, port=port)
            return False, str(exc)

        with self._state_lock:
            self._serial = handle
            self._port = port
            self._latest_frame = WAITING_TEXT
            self._latest_ack = WAITING_TEXT
            self._running.set()
            self._reader = threading.Thread(
                target=self._read_loop,
                args=(handle,),
                name=f"rclink-serial-{port}",
                daemon=True,
            )
            self._reader.start()

        _logger.info("Connected to %s at %s baud", port, baud)
        self._notify(NotificationKind.STATUS, f"Connected to {port} at {baud} baud", connected=True, port=port)
        return True, None

    def disconnect(self) -> None:
        """Close the link. Safe to call repeatedly."""
        if self._teardown():
            _logger.info("Ground station disconnected")
            self._notify(NotificationKind.STATUS, "Disconnected", connected=False)

    def _teardown(self, *, wait: bool = True) -> bool:
        """Close the handle; with *wait*, join the reader for up to a second."""
        with self._state_lock:
            handle = self._serial
            reader = self._reader
            self._serial = None
            self._reader = None
            self._running.clear()
            self._latest_frame = DISCONNECTED_TEXT
            self._latest_ack = WAITING_TEXT
        if handle is None:
            return False
        with contextlib.suppress(serial.SerialException, OSError):
            handle.close()
        if wait and reader is not None and reader is not threading.current_thread():
            reader.join(timeout=1.0)
        return True

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _write(self, data: bytes) -> None:
        handle = self._serial
        if handle is None:
            raise serial.SerialException("port closed")
        with self._write_lock:
            handle.write(data)

    def send_command(self, steering: int, throttle: int) -> CommandFrame | None:
        """Clamp, encode and write one drive command.

        Returns the frame written, or ``None`` if the link is not connected.
        On a write fault the link is torn down and :class:`TransmissionError`
        is raised.
        """
        frame = CommandFrame.clamped(steering, throttle)
        if not self.is_connected:
            return None
        try:
            self._write(frame.encode())
        except (serial.SerialException, OSError) as exc:
            port = self._port or ""
            self._teardown(wait=False)
            _logger.warning("Transmission error on %s: %s", port, exc)
            raise TransmissionError(f"Transmission error: {exc}", port=port) from exc
        self._latest_frame = frame.text
        return frame

    def send_directive(self, directive: GroundStationDirective) -> bool:
        """Validate and write a directive line.

        Raises :class:`DirectiveError` for a ``SelectMacIndex`` outside the
        last applied range. Returns ``False`` without writing when the link
        is down.
        """
        if isinstance(directive, SelectMacIndex):
            current = self._mac_range
            if current is None:
                raise DirectiveError(f"No MAC range applied; cannot select index {directive.index}")
            if not current.contains(directive.index):
                raise DirectiveError(
                    f"MAC index {directive.index} outside applied range {current.start}..{current.end}"
                )
        elif isinstance(directive, SetMacRange):
            self._mac_range = directive

        if not self.is_connected:
            return False

        line = protocol.encode_directive_line(directive)
        try:
            self._write(f"{line}\n".encode("ascii"))
        except (serial.SerialException, OSError) as exc:
            self._teardown(wait=False)
            _logger.warning("Directive %s failed: %s", line, exc)
            self._notify(NotificationKind.TRANSMISSION_ERROR, f"Transmission error: {exc}", connected=False)
            return False
        _logger.debug("TX %s", line)
        return True

    def set_mac_range(self, start: int, end: int) -> bool:
        return self.send_directive(protocol.build_mac_range(start, end))

    def select_mac(self, index: int) -> bool:
        return self.send_directive(protocol.build_mac_select(index))

    def query_active_mac(self) -> bool:
        return self.send_directive(QueryActiveMac())

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _read_loop(self, handle: Any) -> None:
        reader = LineReader()
        while self._running.is_set() and self._serial is handle:
            try:
                waiting = handle.in_waiting
                chunk = handle.read(waiting or 1)
            except (serial.SerialException, OSError, TypeError) as exc:
                if self._serial is handle:
                    _logger.warning("Serial read error: %s", exc)
                    self._teardown()
                    self._notify(NotificationKind.STATUS, f"Serial read error: {exc}", connected=False)
                return
            if not chunk:
                continue
            for line in reader.feed(chunk):
                self.dispatch_line(line)

    def dispatch_line(self, line: str) -> None:
        """Classify one inbound line and report it."""
        try:
            ack = protocol.parse_ack(line)
        except ProtocolError as exc:
            _logger.warning("Dropping malformed ground-station line: %s", exc)
            self._notify(NotificationKind.STATUS, f"Malformed ack dropped: {line.strip()}")
            return
        if ack is None:
            return

        if isinstance(ack, Unrecognized):
            self._latest_ack = ack.line
            _logger.debug("RX %s", ack.line)
        else:
            _logger.info("Ground station: %s", ack.line)
        self._on_notify(
            Notification(
                kind=NotificationKind.ACK,
                source=NotificationSource.SERIAL,
                message=ack.line,
                data={"ack": ack},
            )
        )
