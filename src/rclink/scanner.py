"""Token scanner ingestion.

The scanner is a second, independent serial device that types token
payloads terminated by ``\\n``, ``\\r`` or nothing at all. Bytes are
reassembled into lines across arbitrary chunk boundaries; an idle timer
flushes an unterminated payload, and a debouncer collapses repeated reads
of the same physical scan.
"""

from __future__ import annotations

import codecs
import contextlib
import logging
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol

import serial

from rclink._constants import DEBOUNCE_WINDOW_MS, SCANNER_IDLE_FLUSH_SECONDS
from rclink._redact import redact_token
from rclink.models.notifications import (
    Notification,
    NotificationKind,
    NotificationSource,
    NotifyCallback,
    discard,
)
from rclink.serial_link import SerialFactory, open_serial

_logger = logging.getLogger(__name__)


class _Timer(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], _Timer]


def _thread_timer(interval: float, function: Callable[[], None]) -> _Timer:
    timer = threading.Timer(interval, function)
    timer.daemon = True
    return timer


def _index_of_line_break(text: str) -> int:
    n_index = text.find("\n")
    r_index = text.find("\r")
    if n_index < 0:
        return r_index
    if r_index < 0:
        return n_index
    return min(n_index, r_index)


class LineFramer:
    """Reassemble scanner lines from raw chunks.

    The accumulator is shared between :meth:`feed` (reader thread) and
    the idle timer thread and is only touched under a lock. ``on_line`` is
    always invoked outside the lock.

    Each armed timer carries the generation it was armed for. A timer whose
    callback was already running when :meth:`feed` re-armed finds a newer
    generation and does nothing.
    """

    def __init__(
        self,
        on_line: Callable[[str], None],
        *,
        idle_flush: float = SCANNER_IDLE_FLUSH_SECONDS,
        timer_factory: TimerFactory = _thread_timer,
    ) -> None:
        self._on_line = on_line
        self._idle_flush = idle_flush
        self._timer_factory = timer_factory
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._timer: _Timer | None = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def pending(self) -> str:
        with self._lock:
            return self._buffer

    def feed(self, chunk: bytes | str) -> None:
        """Append *chunk*, emit every complete line, re-arm the idle flush."""
        lines: list[str] = []
        with self._lock:
            if isinstance(chunk, bytes):
                chunk = self._decoder.decode(chunk)
            current = self._buffer + chunk
            while (split := _index_of_line_break(current)) >= 0:
                line = current[:split].strip()
                current = current[split + 1 :]
                if line:
                    lines.append(line)
            self._buffer = current

            self._disarm()
            if self._buffer:
                generation = self._generation
                self._timer = self._timer_factory(self._idle_flush, lambda: self._idle_flush_fired(generation))
                self._timer.start()

        for line in lines:
            self._on_line(line)

    def _disarm(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _take(self) -> str:
        pending = self._buffer.strip()
        self._buffer = ""
        return pending

    def _idle_flush_fired(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
            pending = self._take()
        if pending:
            self._on_line(pending)

    def flush(self) -> str | None:
        """Emit whatever is buffered as one payload."""
        with self._lock:
            self._disarm()
            pending = self._take()
        if not pending:
            return None
        self._on_line(pending)
        return pending

    def clear(self) -> None:
        with self._lock:
            self._disarm()
            self._buffer = ""
            self._decoder.reset()


class Debouncer:
    """Suppress a payload repeated within ``window_ms`` of its last emission."""

    def __init__(self, window_ms: int = DEBOUNCE_WINDOW_MS, clock: Callable[[], float] = time.monotonic) -> None:
        self._window = window_ms / 1000.0
        self._clock = clock
        self._last_payload: str | None = None
        self._last_at = 0.0
        self._lock = threading.Lock()

    def accept(self, payload: str) -> bool:
        with self._lock:
            now = self._clock()
            if payload == self._last_payload and now - self._last_at < self._window:
                return False
            self._last_payload = payload
            self._last_at = now
            return True

    def reset(self) -> None:
        with self._lock:
            self._last_payload = None
            self._last_at = 0.0


class ScannerIngest:
    """Serial token scanner.

    Parameters
    ----------
    on_notify : callable
        Receives ``status`` and ``qr_scanned`` notifications. Called from the
        reader or idle-timer thread.
    serial_factory : callable
        Opens the serial handle; defaults to :func:`serial.serial_for_url`.
    debounce_window_ms : int
        Identical payloads within this window of the last emission are
        dropped.
    idle_flush : float
        Seconds without new bytes before an unterminated payload is emitted.
    clock : callable
        Monotonic clock used by the debouncer.
    timer_factory : callable
        Creates the single-shot idle timer.
    """

    def __init__(
        self,
        *,
        on_notify: NotifyCallback = discard,
        serial_factory: SerialFactory = open_serial,
        debounce_window_ms: int = DEBOUNCE_WINDOW_MS,
        idle_flush: float = SCANNER_IDLE_FLUSH_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        timer_factory: TimerFactory = _thread_timer,
        read_timeout: float = 0.05,
    ) -> None:
        self._on_notify = on_notify
        self._serial_factory = serial_factory
        self._read_timeout = read_timeout
        self._framer = LineFramer(self._on_line, idle_flush=idle_flush, timer_factory=timer_factory)
        self._debouncer = Debouncer(debounce_window_ms, clock)
        self._serial: Any | None = None
        self._port: str | None = None
        self._reader: threading.Thread | None = None
        self._state_lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self._serial is not None

    @property
    def port(self) -> str | None:
        return self._port

    def _status(self, message: str, **data: Any) -> None:
        self._on_notify(Notification.status(NotificationSource.SCANNER, message, **data))

    def connect(self, port: str, baud: int) -> tuple[bool, str | None]:
        self.disconnect()
        if not (port or "").strip():
            return False, "Port name is empty"
        try:
            handle = self._serial_factory(port, baud, timeout=self._read_timeout, write_timeout=None)
        except (serial.SerialException, OSError, ValueError) as exc:
            _logger.warning("Scanner open failed port=%s: %s", port, exc)
            self._status(f"Scanner error: {exc}", connected=False, port=port)
            return False, str(exc)

        with self._state_lock:
            self._serial = handle
            self._port = port
            self._reader = threading.Thread(
                target=self._read_loop,
                args=(handle,),
                name=f"rclink-scanner-{port}",
                daemon=True,
            )
            self._reader.start()

        _logger.info("Scanner connected on %s", port)
        self._status(f"Scanner connected: {port}", connected=True, port=port)
        return True, None

    def disconnect(self) -> None:
        if self._teardown():
            _logger.info("Scanner disconnected")
            self._status("Scanner disconnected", connected=False)

    def _teardown(self) -> bool:
        with self._state_lock:
            handle = self._serial
            reader = self._reader
            self._serial = None
            self._reader = None
        self._framer.clear()
        if handle is None:
            return False
        with contextlib.suppress(serial.SerialException, OSError):
            handle.close()
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=1.0)
        return True

    def _read_loop(self, handle: Any) -> None:
        while self._serial is handle:
            try:
                chunk = handle.read(handle.in_waiting or 1)
            except (serial.SerialException, OSError, TypeError) as exc:
                if self._serial is handle:
                    _logger.warning("Scanner read error: %s", exc)
                    self._teardown()
                    self._status(f"Scanner read error: {exc}", connected=False)
                return
            if chunk:
                self.feed(chunk)

    def feed(self, chunk: bytes | str) -> None:
        """Push raw scanner bytes through framing and debounce."""
        self._framer.feed(chunk)

    def flush(self) -> str | None:
        return self._framer.flush()

    def _on_line(self, payload: str) -> None:
        if not self._debouncer.accept(payload):
            _logger.debug("Debounced repeat scan %s", redact_token(payload))
            return
        _logger.info("Scan received %s", redact_token(payload))
        self._on_notify(
            Notification(
                kind=NotificationKind.QR_SCANNED,
                source=NotificationSource.SCANNER,
                data={"payload": payload, "source": "scanner"},
            )
        )
