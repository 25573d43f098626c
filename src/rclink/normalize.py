"""Normalization helpers.

Centralizes defensive numeric parsing and axis mapping.
"""

from __future__ import annotations

from typing import Any

from rclink._constants import AXIS_MAX, AXIS_MIN, RAW_MAX, RAW_MIN


def strict_int(value: Any) -> int | None:
    """Parse a base-10 integer string without accepting floats or blanks."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    try:
        return int(text, 10)
    except ValueError:
        return None


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_axis(value: int) -> int:
    """Clamp a steering/throttle value into ``[0, 180]``."""
    return int(clamp(value, AXIS_MIN, AXIS_MAX))


def clamp_raw(value: int) -> int:
    """Clamp a raw sample into the 16-bit unsigned range."""
    return int(clamp(value, RAW_MIN, RAW_MAX))


def map_range(value: float, from_min: float, from_max: float, to_min: float, to_max: float) -> int:
    """Linearly map *value* between ranges, clamping input and output.

    Rounds half to even.
    """
    clamped = clamp(value, from_min, from_max)
    scaled = (clamped - from_min) * (to_max - to_min) / (from_max - from_min) + to_min
    return int(round(clamp(scaled, min(to_min, to_max), max(to_min, to_max))))


def raw_to_axis(raw: int) -> int:
    """Map a 16-bit raw sample onto ``[0, 180]``."""
    return map_range(raw, RAW_MIN, RAW_MAX, AXIS_MIN, AXIS_MAX)


def reverse_axis(value: int) -> int:
    return AXIS_MAX - value
