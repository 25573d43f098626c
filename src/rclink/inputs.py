"""Local input providers.

The arbiter polls one provider per tick while remote ingest is disabled.
Providers are synchronous and return ``(steering, throttle)`` in the
``0..180`` command space, or ``None`` when they have nothing new.
"""

from __future__ import annotations

import enum
import threading
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from rclink._constants import (
    AXIS_MAX,
    AXIS_MIN,
    NEUTRAL,
    NUDGE_STEERING_STEP,
    NUDGE_THROTTLE_MAX,
    NUDGE_THROTTLE_MIN,
    NUDGE_THROTTLE_STEP,
)
from rclink.normalize import clamp_axis, raw_to_axis


@runtime_checkable
class LocalInputProvider(Protocol):
    def poll(self) -> tuple[int, int] | None: ...


class Nudge(enum.StrEnum):
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"
    CENTER = "center"


_KEY_ALIASES: dict[str, Nudge] = {
    "a": Nudge.LEFT,
    "left": Nudge.LEFT,
    "d": Nudge.RIGHT,
    "right": Nudge.RIGHT,
    "w": Nudge.UP,
    "up": Nudge.UP,
    "s": Nudge.DOWN,
    "down": Nudge.DOWN,
    "space": Nudge.CENTER,
    " ": Nudge.CENTER,
}


class KeyboardNudge:
    """Manual control by discrete key presses.

    Steering moves in steps of 5 across the full range; throttle moves in
    steps of 1 within ``40..140``.
    """

    def __init__(self, steering: int = NEUTRAL, throttle: int = NEUTRAL) -> None:
        self._steering = clamp_axis(steering)
        self._throttle = max(NUDGE_THROTTLE_MIN, min(NUDGE_THROTTLE_MAX, throttle))
        self._lock = threading.Lock()

    @property
    def value(self) -> tuple[int, int]:
        with self._lock:
            return self._steering, self._throttle

    def nudge(self, direction: Nudge | str) -> tuple[int, int]:
        direction = _KEY_ALIASES.get(str(direction).lower(), direction)
        with self._lock:
            if direction == Nudge.LEFT:
                self._steering = max(AXIS_MIN, self._steering - NUDGE_STEERING_STEP)
            elif direction == Nudge.RIGHT:
                self._steering = min(AXIS_MAX, self._steering + NUDGE_STEERING_STEP)
            elif direction == Nudge.UP:
                self._throttle = min(NUDGE_THROTTLE_MAX, self._throttle + NUDGE_THROTTLE_STEP)
            elif direction == Nudge.DOWN:
                self._throttle = max(NUDGE_THROTTLE_MIN, self._throttle - NUDGE_THROTTLE_STEP)
            elif direction == Nudge.CENTER:
                self._steering = NEUTRAL
                self._throttle = NEUTRAL
            else:
                raise ValueError(f"Unknown nudge: {direction!r}")
            return self._steering, self._throttle

    def set(self, steering: int, throttle: int) -> None:
        """Absolute position, as from a slider."""
        with self._lock:
            self._steering = clamp_axis(steering)
            self._throttle = clamp_axis(throttle)

    def poll(self) -> tuple[int, int] | None:
        return self.value


class GamepadAxes:
    """Adapts a raw axis reader (``0..65535`` per axis) to a provider."""

    def __init__(self, read_axes: Callable[[], tuple[int, int] | None]) -> None:
        self._read_axes = read_axes

    def poll(self) -> tuple[int, int] | None:
        axes = self._read_axes()
        if axes is None:
            return None
        steering_raw, throttle_raw = axes
        return raw_to_axis(steering_raw), raw_to_axis(throttle_raw)
