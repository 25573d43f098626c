"""Party-mode session gate."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from typing import Any

from rclink._constants import SESSION_SECONDS, SESSION_TICK_SECONDS
from rclink.models.events import SessionAction
from rclink.models.notifications import (
    Notification,
    NotificationKind,
    NotificationSource,
    NotifyCallback,
    discard,
)

_logger = logging.getLogger(__name__)


class SessionGate:
    """Timed lock/unlock state machine.

    ``Idle`` until :meth:`start_session`, then ``Active`` until the window
    elapses or :meth:`stop_session` is called. Every Active period ends with
    exactly one ``ended`` notification.

    Parameters
    ----------
    duration : float
        Length of a session in seconds.
    on_notify : callable
        Receives ``session`` notifications whose ``data`` carries
        ``action`` (``started``/``tick``/``ended``), ``remaining_ms``,
        ``session_seconds`` and, for ``started``, ``member``,
        ``qr_payload`` and ``source``.
    clock : callable
        Monotonic clock in seconds.  Injected by tests.
    tick_interval : float
        Seconds between ``tick`` notifications.
    """

    def __init__(
        self,
        duration: float = SESSION_SECONDS,
        *,
        on_notify: NotifyCallback = discard,
        clock: Callable[[], float] = time.monotonic,
        tick_interval: float = SESSION_TICK_SECONDS,
    ) -> None:
        self.duration = duration
        self._on_notify = on_notify
        self._clock = clock
        self._tick_interval = tick_interval
        self._ends_at: float | None = None
        self._tick_task: asyncio.Task[None] | None = None

    @property
    def is_active(self) -> bool:
        return self._ends_at is not None and self._ends_at > self._clock()

    @property
    def remaining(self) -> float:
        """Seconds left in the current session, ``0.0`` when idle."""
        if self._ends_at is None:
            return 0.0
        return max(0.0, self._ends_at - self._clock())

    @property
    def remaining_ms(self) -> int:
        return int(self.remaining * 1000)

    @property
    def ticking(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    def _emit(self, action: SessionAction, **data: Any) -> None:
        self._on_notify(
            Notification(
                kind=NotificationKind.SESSION,
                source=NotificationSource.SESSION,
                message=str(action),
                data={
                    "action": action,
                    "remaining_ms": self.remaining_ms,
                    "session_seconds": int(self.duration),
                    **data,
                },
            )
        )

    def start_session(
        self,
        *,
        member: str | None = None,
        qr_payload: str | None = None,
        source: str | None = None,
    ) -> None:
        """Begin (or restart) the countdown and arm the tick.

        Restarting an Active session resets its end time and emits
        ``started`` again; no ``ended`` is emitted for the replaced window.
        """
        self._ends_at = self._clock() + self.duration
        self._arm()
        _logger.info("Session started for %.0f s", self.duration)
        self._emit(SessionAction.STARTED, member=member, qr_payload=qr_payload, source=source)
        self._emit(SessionAction.TICK)

    def stop_session(self) -> bool:
        """End the current session.

        Returns ``True`` when an ``ended`` notification was emitted.
        """
        if self._ends_at is None:
            self._disarm()
            return False
        self._ends_at = None
        self._disarm()
        _logger.info("Session stopped")
        self._emit(SessionAction.ENDED)
        return True

    def tick(self) -> bool:
        """Re-evaluate elapsed time; returns whether the session continues."""
        if self._ends_at is None:
            return False
        if not self.is_active:
            self._ends_at = None
            _logger.info("Session expired")
            self._emit(SessionAction.ENDED)
            return False
        self._emit(SessionAction.TICK)
        return True

    def _arm(self) -> None:
        if self.ticking:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _logger.debug("No running loop; session ticks must be driven manually")
            return
        self._tick_task = loop.create_task(self._run_ticks(), name="rclink-session-tick")

    def _disarm(self) -> None:
        task = self._tick_task
        self._tick_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _run_ticks(self) -> None:
        while True:
            await asyncio.sleep(self._tick_interval)
            if not self.tick():
                break
        if self._tick_task is asyncio.current_task():
            self._tick_task = None

    async def aclose(self) -> None:
        """Cancel the tick task without emitting anything."""
        task = self._tick_task
        self._tick_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
