"""Control arbitration and fixed-cadence transmission.

The arbiter is the only writer of drive commands. Each tick it picks the
authoritative input, applies direction and trim, asks the session gate
whether output is permitted, transmits, and publishes a ``control`` event
when the derived values changed since the last one published.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from rclink._constants import NEUTRAL, TRANSMIT_INTERVAL_SECONDS
from rclink.config import DriveSettings
from rclink.exceptions import TransmissionError
from rclink.inputs import LocalInputProvider
from rclink.models.control import CommandFrame, ControlSample, ControlSource
from rclink.models.events import BroadcastEvent, ControlEvent, EventClock
from rclink.models.notifications import (
    Notification,
    NotificationKind,
    NotificationSource,
    NotifyCallback,
    discard,
)
from rclink.normalize import clamp_axis, raw_to_axis, reverse_axis

_logger = logging.getLogger(__name__)


class CommandSink(Protocol):
    @property
    def is_connected(self) -> bool: ...

    def send_command(self, steering: int, throttle: int) -> CommandFrame | None: ...


class GateView(Protocol):
    @property
    def is_active(self) -> bool: ...


ControlKey = tuple[int, int, int, int | None, int | None, int | None]


class ControlArbiter:
    """Per-tick command selection.

    Parameters
    ----------
    link : CommandSink
        Where frames are written; usually a :class:`~rclink.serial_link.SerialLink`.
    gate : GateView
        Session gate consulted when gating is enabled.
    publish : callable
        Receives each deduplicated :class:`~rclink.models.events.ControlEvent`.
    on_notify : callable
        Receives ``transmission_error`` notifications.
    local_input : LocalInputProvider, optional
        Polled each tick while remote ingest is disabled.
    event_clock : EventClock, optional
        Timestamp source for published events.
    """

    def __init__(
        self,
        link: CommandSink,
        gate: GateView,
        publish: Callable[[BroadcastEvent], None],
        *,
        on_notify: NotifyCallback = discard,
        local_input: LocalInputProvider | None = None,
        event_clock: EventClock | None = None,
    ) -> None:
        self._link = link
        self._gate = gate
        self._publish = publish
        self._on_notify = on_notify
        self.local_input = local_input
        self._event_clock = event_clock or EventClock()
        self._remote = ControlSample.neutral(ControlSource.REMOTE)
        self._local = ControlSample.neutral(ControlSource.LOCAL_DEVICE)
        self._neutral_sent = False
        self._last_key: ControlKey | None = None
        self._last_event: ControlEvent | None = None

    @property
    def remote_sample(self) -> ControlSample:
        return self._remote

    @property
    def local_sample(self) -> ControlSample:
        return self._local

    @property
    def neutral_sent(self) -> bool:
        """Whether the single locked-state neutral frame has gone out."""
        return self._neutral_sent

    @property
    def last_event(self) -> ControlEvent | None:
        return self._last_event

    def update_remote(self, sample: ControlSample) -> None:
        self._remote = sample

    def update_local(self, steering: int, throttle: int, source: ControlSource = ControlSource.LOCAL_DEVICE) -> None:
        self._local = ControlSample(source=source, steering=clamp_axis(steering), throttle=clamp_axis(throttle))

    def reset_broadcast(self) -> None:
        """Force the next tick to publish even if nothing changed."""
        self._last_key = None

    def tick(self, settings: DriveSettings) -> CommandFrame | None:
        """Run one arbitration step; returns the frame written, if any."""
        if not self._link.is_connected:
            return None

        if settings.gating_enabled and not self._gate.is_active:
            if self._neutral_sent:
                return None
            self._neutral_sent = True
            _logger.debug("Output locked; sending neutral once")
            return self._transmit(NEUTRAL, NEUTRAL)
        self._neutral_sent = False

        if settings.accept_local_input:
            if self.local_input is not None:
                polled = self.local_input.poll()
                if polled is not None:
                    self.update_local(*polled)
            sample = self._local
        else:
            sample = self._remote

        steering = sample.steering
        throttle = sample.throttle
        if settings.reverse_steering:
            steering = reverse_axis(steering)
        if settings.reverse_throttle:
            throttle = reverse_axis(throttle)
        steering = clamp_axis(steering + settings.steering_offset)
        throttle = clamp_axis(throttle)

        frame = self._transmit(steering, throttle)
        if frame is None:
            return None
        self._publish_if_changed(frame, sample, settings.debug_enabled)
        return frame

    def _transmit(self, steering: int, throttle: int) -> CommandFrame | None:
        try:
            return self._link.send_command(steering, throttle)
        except TransmissionError as exc:
            self._on_notify(
                Notification(
                    kind=NotificationKind.TRANSMISSION_ERROR,
                    source=NotificationSource.ARBITER,
                    message=str(exc),
                    data={"port": exc.port},
                )
            )
            return None

    def _publish_if_changed(self, frame: CommandFrame, sample: ControlSample, debug: bool) -> None:
        if debug:
            steering_raw, throttle_raw, brake_raw = sample.steering_raw, sample.throttle_raw, sample.brake_raw
            brake = raw_to_axis(brake_raw) if brake_raw is not None else 0
        else:
            steering_raw = throttle_raw = brake_raw = None
            brake = 0

        key: ControlKey = (frame.steering, frame.throttle, brake, steering_raw, throttle_raw, brake_raw)
        if key == self._last_key:
            return
        self._last_key = key

        event = ControlEvent(
            ts=self._event_clock.now_ms(),
            steering=frame.steering,
            throttle=frame.throttle,
            brake=brake,
            steering_raw=steering_raw,
            throttle_raw=throttle_raw,
            brake_raw=brake_raw,
            debug_enabled=debug,
        )
        self._last_event = event
        self._publish(event)

    async def run(
        self,
        settings: Callable[[], DriveSettings],
        interval: float = TRANSMIT_INTERVAL_SECONDS,
    ) -> None:
        """Tick every *interval* seconds until cancelled.

        Deadlines advance by a fixed step; a late tick is not followed by a
        burst of catch-up ticks.
        """
        loop = asyncio.get_running_loop()
        next_at = loop.time()
        _logger.info("Arbitration loop started (%.0f ms)", interval * 1000)
        try:
            while True:
                self.tick(settings())
                next_at += interval
                delay = next_at - loop.time()
                if delay < 0:
                    next_at = loop.time()
                    delay = 0
                await asyncio.sleep(delay)
        finally:
            _logger.info("Arbitration loop stopped")
