"""Data models for rclink payloads."""

from rclink.models._base import RcBaseModel
from rclink.models.control import CommandFrame, ControlSample, ControlSource, RemoteControlPayload
from rclink.models.events import (
    BroadcastEvent,
    ControlEvent,
    EventClock,
    PartySessionEvent,
    PartyStateEvent,
    PartyStateReason,
    SessionAction,
)
from rclink.models.ground_station import (
    AckKind,
    ActiveMac,
    GroundStationAck,
    GroundStationDirective,
    ListAck,
    PassThrough,
    QueryActiveMac,
    RangeAck,
    SelectMacIndex,
    SetMacRange,
    Unrecognized,
)
from rclink.models.notifications import Notification, NotificationKind, NotificationSource

__all__ = [
    "AckKind",
    "ActiveMac",
    "BroadcastEvent",
    "CommandFrame",
    "ControlEvent",
    "ControlSample",
    "ControlSource",
    "EventClock",
    "GroundStationAck",
    "GroundStationDirective",
    "ListAck",
    "Notification",
    "NotificationKind",
    "NotificationSource",
    "PartySessionEvent",
    "PartyStateEvent",
    "PartyStateReason",
    "PassThrough",
    "QueryActiveMac",
    "RangeAck",
    "RcBaseModel",
    "RemoteControlPayload",
    "SelectMacIndex",
    "SessionAction",
    "SetMacRange",
    "Unrecognized",
]
