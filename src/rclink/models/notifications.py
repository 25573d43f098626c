"""Component notifications.

Every component reports through a single ``on_notify`` callable that
receives :class:`Notification` instances. The controller funnels them into
one queue; only the controller decides what they mean.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NotificationKind(StrEnum):
    STATUS = "status"
    CONTROL = "control"
    QR_SCANNED = "qr_scanned"
    ACK = "ack"
    SESSION = "session"
    TRANSMISSION_ERROR = "transmission_error"


class NotificationSource(StrEnum):
    SERIAL = "serial"
    SCANNER = "scanner"
    REMOTE = "remote"
    HUB = "hub"
    SESSION = "session"
    ARBITER = "arbiter"
    CONTROLLER = "controller"


class Notification(BaseModel):
    """A single outbound message from a component."""

    model_config = ConfigDict(frozen=True)

    kind: NotificationKind
    source: NotificationSource
    message: str = ""
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = Field(default_factory=dict, description="Kind-specific payload")

    @field_validator("message")
    @classmethod
    def _strip_message(cls, value: str) -> str:
        return value.strip()

    @classmethod
    def status(cls, source: NotificationSource, message: str, **data: Any) -> Notification:
        return cls(kind=NotificationKind.STATUS, source=source, message=message, data=data)


NotifyCallback = Callable[[Notification], None]


def discard(_notification: Notification) -> None:
    """Default sink for components constructed without a listener."""
