"""Control sample, command frame and remote payload models."""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rclink._constants import AXIS_MAX, AXIS_MIN, NEUTRAL, RAW_STEERING_CENTER
from rclink.models._base import RcBaseModel
from rclink.normalize import clamp, clamp_axis, clamp_raw, raw_to_axis

_AXIS = {"ge": AXIS_MIN, "le": AXIS_MAX}


class ControlSource(enum.StrEnum):
    """Producer of a control sample."""

    MANUAL = "manual"
    LOCAL_DEVICE = "local_device"
    REMOTE = "remote"


class ControlSample(RcBaseModel):
    """A steering/throttle pair in the ``0..180`` command space.

    Raw fields are the untransformed 16-bit samples when the producer has
    them (remote ingest does, the keyboard does not).
    """

    source: ControlSource
    steering: int = Field(default=NEUTRAL, **_AXIS)
    throttle: int = Field(default=NEUTRAL, **_AXIS)
    steering_raw: int | None = None
    throttle_raw: int | None = None
    brake_raw: int | None = None

    @classmethod
    def neutral(cls, source: ControlSource = ControlSource.MANUAL) -> ControlSample:
        return cls(source=source)


class CommandFrame(RcBaseModel):
    """One ``S###T###`` drive command."""

    steering: int = Field(**_AXIS)
    throttle: int = Field(**_AXIS)

    @classmethod
    def clamped(cls, steering: int, throttle: int) -> CommandFrame:
        """Build a frame, clamping both axes into ``[0, 180]``."""
        return cls(steering=clamp_axis(int(steering)), throttle=clamp_axis(int(throttle)))

    @classmethod
    def neutral(cls) -> CommandFrame:
        return cls(steering=NEUTRAL, throttle=NEUTRAL)

    @property
    def text(self) -> str:
        """Frame without terminator, e.g. ``S090T090``."""
        return f"S{self.steering:03d}T{self.throttle:03d}"

    def encode(self) -> bytes:
        return f"{self.text}\n".encode("ascii")


class RemoteControlPayload(BaseModel):
    """JSON object received from the remote control telemetry channel.

    Every field is optional; missing fields fall back to centered steering
    and released pedals. Values must be JSON integers; out-of-range values
    are clamped into ``[0, 65535]``.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    steering: int = Field(default=RAW_STEERING_CENTER, strict=True)
    throttle: int = Field(default=0, strict=True)
    brake: int = Field(default=0, strict=True)

    @field_validator("steering", "throttle", "brake")
    @classmethod
    def _clamp_raw(cls, value: int) -> int:
        return clamp_raw(value)

    @property
    def steering180(self) -> int:
        return raw_to_axis(self.steering)

    @property
    def throttle180(self) -> int:
        """Throttle and brake folded around neutral.

        Net forward input moves below 90, net braking moves above 90.
        """
        net = clamp(self.throttle - self.brake, -65535, 65535)
        normalized = net / 65535.0
        return int(round(clamp(90 - normalized * 90, AXIS_MIN, AXIS_MAX)))

    def to_sample(self) -> ControlSample:
        return ControlSample(
            source=ControlSource.REMOTE,
            steering=self.steering180,
            throttle=self.throttle180,
            steering_raw=self.steering,
            throttle_raw=self.throttle,
            brake_raw=self.brake,
        )
