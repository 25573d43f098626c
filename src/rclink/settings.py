"""Key=value settings file.

The operator shell persists its scalars (ports, toggles, offsets, MAC index
range) in a flat ``Key=Value`` text file. Unknown keys are ignored, values
that fail to parse keep their default, and a missing file yields defaults.
Toggles that also come from configuration stay ``None`` until the file
names them, so environment values are only overridden by keys on disk.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any

from rclink.config import DriveSettings, RcLinkConfig
from rclink.normalize import strict_int

_logger = logging.getLogger(__name__)


def _parse_bool(value: str) -> bool | None:
    normalized = value.strip().lower()
    if normalized == "true":
        return True
    if normalized == "false":
        return False
    return None


def _format_bool(value: bool) -> str:
    return "True" if value else "False"


@dataclasses.dataclass
class Settings:
    """Persisted operator settings."""

    port: str | None = None
    baud: str | None = None
    websocket_enabled: bool | None = None
    reverse_steering: bool = False
    reverse_throttle: bool = False
    auto_connect_serial: bool = False
    steering_offset: int = 0
    start_index: int = 0
    end_index: int = 0
    scanner_port: str | None = None
    party_mode: bool | None = None
    any_qr: bool | None = None
    session_seconds: int | None = None
    debug_enabled: bool | None = None

    def drive_settings(self, config: RcLinkConfig) -> DriveSettings:
        """Drive toggles for *config* (already merged) plus persisted trims."""
        return config.drive_settings(
            reverse_steering=self.reverse_steering,
            reverse_throttle=self.reverse_throttle,
            steering_offset=self.steering_offset,
        )

    def apply_to(self, config: RcLinkConfig) -> RcLinkConfig:
        """Fold persisted values into *config*.

        Only toggles present in the file replace configured ones; explicit
        config ports win over persisted ports.
        """
        changes: dict[str, Any] = {}
        for attr, field_name in _CONFIG_TOGGLES.items():
            value = getattr(self, attr)
            if value is not None:
                changes[field_name] = value
        if config.serial_port is None and self.port:
            changes["serial_port"] = self.port
        if self.baud:
            baud = strict_int(self.baud)
            if baud is not None and baud > 0:
                changes["baud"] = baud
        if config.scanner_port is None and self.scanner_port:
            changes["scanner_port"] = self.scanner_port
        if self.session_seconds is not None and self.session_seconds > 0:
            changes["session_seconds"] = self.session_seconds
        return dataclasses.replace(config, **changes)


# Persisted toggle -> RcLinkConfig field
_CONFIG_TOGGLES: dict[str, str] = {
    "websocket_enabled": "remote_enabled",
    "party_mode": "party_mode",
    "any_qr": "any_qr",
    "debug_enabled": "debug_enabled",
}

# Key in the file -> (attribute, kind)
_FIELDS: dict[str, tuple[str, str]] = {
    "Port": ("port", "str"),
    "Baud": ("baud", "str"),
    "WebSocketEnabled": ("websocket_enabled", "bool"),
    "ReverseSteering": ("reverse_steering", "bool"),
    "ReverseThrottle": ("reverse_throttle", "bool"),
    "AutoConnectSerial": ("auto_connect_serial", "bool"),
    "SteeringOffset": ("steering_offset", "int"),
    "StartIndex": ("start_index", "int"),
    "EndIndex": ("end_index", "int"),
    "ScannerPort": ("scanner_port", "str"),
    "PartyMode": ("party_mode", "bool"),
    "AnyQr": ("any_qr", "bool"),
    "SessionSeconds": ("session_seconds", "int"),
    "DebugEnabled": ("debug_enabled", "bool"),
}


class SettingsFile:
    """Synchronous persistence provider backed by a ``Key=Value`` file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Settings:
        settings = Settings()
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return settings
        except OSError:
            _logger.warning("Settings load failed path=%s", self._path, exc_info=True)
            return settings

        for line in text.splitlines():
            parts = line.strip().split("=")
            if len(parts) != 2:
                continue
            key, value = parts[0].strip(), parts[1].strip()
            field = _FIELDS.get(key)
            if field is None:
                continue
            attr, kind = field
            parsed: Any
            if kind == "bool":
                parsed = _parse_bool(value)
            elif kind == "int":
                parsed = strict_int(value)
            else:
                parsed = value or None
            if parsed is None and kind != "str":
                _logger.debug("Ignoring unparseable setting %s=%r", key, value)
                continue
            setattr(settings, attr, parsed)
        return settings

    def save(self, settings: Settings, **updates: Any) -> Settings:
        """Apply *updates* to *settings* and write the file.

        Returns the updated settings even when writing fails; write errors
        are logged.
        """
        if updates:
            settings = dataclasses.replace(settings, **updates)

        lines: list[str] = []
        for key, (attr, kind) in _FIELDS.items():
            value = getattr(settings, attr)
            if value is None or value == "":
                continue
            if kind == "bool":
                lines.append(f"{key}={_format_bool(value)}")
            else:
                lines.append(f"{key}={value}")

        try:
            self._path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        except OSError:
            _logger.warning("Settings save failed path=%s", self._path, exc_info=True)
        return settings
