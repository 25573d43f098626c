"""rclink - RC vehicle ground-station link with live dashboard telemetry."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("rclink")
except PackageNotFoundError:
    __version__ = "0+local"
from rclink.arbiter import ControlArbiter
from rclink.config import DriveSettings, RcLinkConfig
from rclink.controller import GroundStationController
from rclink.exceptions import (
    DirectiveError,
    ProtocolError,
    RcLinkConfigError,
    RcLinkError,
    SerialLinkError,
    TransmissionError,
)
from rclink.hub import BroadcastHub
from rclink.inputs import GamepadAxes, KeyboardNudge, LocalInputProvider
from rclink.models import (
    ActiveMac,
    CommandFrame,
    ControlEvent,
    ControlSample,
    ControlSource,
    GroundStationAck,
    GroundStationDirective,
    Notification,
    NotificationKind,
    PartySessionEvent,
    PartyStateEvent,
    QueryActiveMac,
    SelectMacIndex,
    SetMacRange,
)
from rclink.remote import RemoteControlIngest
from rclink.scanner import ScannerIngest
from rclink.serial_link import SerialLink, list_serial_ports
from rclink.session import SessionGate
from rclink.settings import Settings, SettingsFile

__all__ = [
    "ActiveMac",
    "BroadcastHub",
    "CommandFrame",
    "ControlArbiter",
    "ControlEvent",
    "ControlSample",
    "ControlSource",
    "DirectiveError",
    "DriveSettings",
    "GamepadAxes",
    "GroundStationAck",
    "GroundStationController",
    "GroundStationDirective",
    "KeyboardNudge",
    "LocalInputProvider",
    "Notification",
    "NotificationKind",
    "PartySessionEvent",
    "PartyStateEvent",
    "ProtocolError",
    "QueryActiveMac",
    "RcLinkConfig",
    "RcLinkConfigError",
    "RcLinkError",
    "RemoteControlIngest",
    "ScannerIngest",
    "SelectMacIndex",
    "SerialLink",
    "SerialLinkError",
    "SessionGate",
    "SetMacRange",
    "Settings",
    "SettingsFile",
    "TransmissionError",
    "__version__",
    "list_serial_ports",
]
