"""Broadcast events pushed to dashboard subscribers.

Each event serializes to a JSON object tagged with ``type`` and ``version``
and stamped with a millisecond ``ts`` that never decreases, even if the
wall clock steps backwards.
"""

from __future__ import annotations

import enum
import threading
import time
from collections.abc import Callable
from typing import Literal

from pydantic import Field

from rclink._constants import EVENT_SCHEMA_VERSION
from rclink.models._base import RcBaseModel


class EventClock:
    """Millisecond wall-clock timestamps that never go backwards."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            current = int(self._clock() * 1000)
            if current < self._last:
                current = self._last
            self._last = current
            return current


class BroadcastEvent(RcBaseModel):
    """Common envelope fields."""

    type: str
    version: str = EVENT_SCHEMA_VERSION
    ts: int = Field(ge=0)


class ControlEvent(BroadcastEvent):
    """Transmitted control values.

    ``steering``/``throttle``/``brake`` are in the ``0..180`` command space;
    the raw fields are only populated while debug telemetry is enabled.
    """

    type: Literal["control"] = "control"
    steering: int
    throttle: int
    brake: int = 0
    steering_raw: int | None = None
    throttle_raw: int | None = None
    brake_raw: int | None = None
    debug_enabled: bool = False


class PartyStateReason(enum.StrEnum):
    STARTUP = "startup"
    MODE = "mode"
    ANY_QR = "any-qr"
    DEBUG = "debug"
    SCANNER = "scanner"
    SESSION_STARTED = "session-started"
    SESSION_ENDED = "session-ended"
    QR_REJECTED = "qr-rejected"


class PartyStateEvent(BroadcastEvent):
    """Snapshot of party-mode gating state."""

    type: Literal["partyday.state"] = "partyday.state"
    reason: PartyStateReason
    mode_enabled: bool
    session_active: bool
    remaining_ms: int = Field(ge=0)
    any_qr: bool
    scanner_connected: bool
    scanner_port: str | None = None
    debug_enabled: bool = False


class SessionAction(enum.StrEnum):
    STARTED = "started"
    ENDED = "ended"
    TICK = "tick"


class PartySessionEvent(BroadcastEvent):
    """Session lifecycle: ``started`` once, ``tick`` each second, ``ended`` once."""

    type: Literal["partyday.session"] = "partyday.session"
    action: SessionAction
    member: str | None = None
    qr_payload: str | None = None
    source: str | None = None
    session_seconds: int
    remaining_ms: int = Field(ge=0)
    session_active: bool
    mode_enabled: bool
