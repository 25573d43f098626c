"""Link configuration for rclink."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from typing import Any

from rclink import _constants as c
from rclink.exceptions import RcLinkConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env: Mapping[str, str], key: str, cast: type) -> Any:
    raw = env.get(key)
    if raw is None:
        return None
    try:
        return cast(raw)
    except ValueError as exc:
        raise RcLinkConfigError(f"{key} must be a {cast.__name__}, got {raw!r}") from exc


@dataclasses.dataclass(frozen=True)
class DriveSettings:
    """Runtime toggles consulted by every arbitration tick.

    Instances are immutable; a toggle produces a new instance via
    :func:`dataclasses.replace` which the controller hands to the arbiter.
    """

    reverse_steering: bool = False
    reverse_throttle: bool = False
    steering_offset: int = 0
    gating_enabled: bool = False
    debug_enabled: bool = False
    remote_enabled: bool = True

    @property
    def accept_local_input(self) -> bool:
        """Local input is only authoritative while remote ingest is off."""
        return not self.remote_enabled


@dataclasses.dataclass(frozen=True)
class RcLinkConfig:
    """Controller configuration.

    Parameters
    ----------
    serial_port : str or None
        Ground-station serial port (``COM3``, ``/dev/ttyUSB0`` or a
        pyserial URL such as ``loop://``).
    baud : int
        Ground-station baud rate.
    scanner_port : str or None
        Token scanner serial port. ``None`` disables the scanner.
    scanner_baud : int
        Scanner baud rate.
    remote_url : str
        Websocket address of the remote control telemetry source.
    remote_enabled : bool
        Whether remote ingest is the authoritative input source.
    hub_host, hub_port, hub_path : str, int, str
        Bind address and path of the event broadcast hub.
    transmit_interval : float
        Arbitration cadence in seconds.
    session_seconds : int
        Length of a party-mode driving window.
    debounce_window_ms : int
        Identical scans within this window count as one.
    scanner_idle_flush : float
        Seconds of silence after which an unterminated scan is flushed.
    reconnect_delay : float
        Backoff between remote ingest reconnect attempts.
    hub_close_timeout : float
        Per-subscriber close timeout when the hub stops.
    hub_send_timeout : float
        Per-subscriber write timeout during a broadcast.
    party_mode : bool
        Lock command output until a session is authorized.
    any_qr : bool
        Any scanned token authorizes a session. When ``False`` only
        ``allowed_tokens`` do.
    allowed_tokens : tuple of str
        Accepted tokens when ``any_qr`` is off.
    debug_enabled : bool
        Include raw samples in control telemetry.
    settings_path : str
        Location of the key=value settings file.
    """

    serial_port: str | None = None
    baud: int = c.DEFAULT_BAUD
    scanner_port: str | None = None
    scanner_baud: int = c.DEFAULT_BAUD
    remote_url: str = c.DEFAULT_REMOTE_URL
    remote_enabled: bool = True
    hub_host: str = c.DEFAULT_HUB_HOST
    hub_port: int = c.DEFAULT_HUB_PORT
    hub_path: str = c.DEFAULT_HUB_PATH
    transmit_interval: float = c.TRANSMIT_INTERVAL_SECONDS
    session_seconds: int = c.SESSION_SECONDS
    debounce_window_ms: int = c.DEBOUNCE_WINDOW_MS
    scanner_idle_flush: float = c.SCANNER_IDLE_FLUSH_SECONDS
    reconnect_delay: float = c.RECONNECT_DELAY_SECONDS
    hub_close_timeout: float = c.HUB_CLOSE_TIMEOUT_SECONDS
    hub_send_timeout: float = c.HUB_SEND_TIMEOUT_SECONDS
    party_mode: bool = False
    any_qr: bool = True
    allowed_tokens: tuple[str, ...] = ()
    debug_enabled: bool = False
    settings_path: str = "settings.ini"

    def __post_init__(self) -> None:
        if self.session_seconds <= 0:
            raise RcLinkConfigError("session_seconds must be positive")
        if self.transmit_interval <= 0:
            raise RcLinkConfigError("transmit_interval must be positive")
        if self.debounce_window_ms < 0:
            raise RcLinkConfigError("debounce_window_ms must not be negative")
        if not self.hub_path.startswith("/"):
            object.__setattr__(self, "hub_path", "/" + self.hub_path)

    @classmethod
    def from_env(cls, **overrides: Any) -> RcLinkConfig:
        """Create configuration from ``RCLINK_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "RCLINK_SERIAL_PORT": "serial_port",
            "RCLINK_SCANNER_PORT": "scanner_port",
            "RCLINK_REMOTE_URL": "remote_url",
            "RCLINK_HUB_HOST": "hub_host",
            "RCLINK_HUB_PATH": "hub_path",
            "RCLINK_SETTINGS_PATH": "settings_path",
        }
        _ENV_INT_MAP = {
            "RCLINK_BAUD": "baud",
            "RCLINK_SCANNER_BAUD": "scanner_baud",
            "RCLINK_HUB_PORT": "hub_port",
            "RCLINK_SESSION_SECONDS": "session_seconds",
            "RCLINK_DEBOUNCE_WINDOW_MS": "debounce_window_ms",
        }
        _ENV_FLOAT_MAP = {
            "RCLINK_RECONNECT_DELAY": "reconnect_delay",
        }
        _ENV_BOOL_MAP = {
            "RCLINK_REMOTE_ENABLED": ("remote_enabled", True),
            "RCLINK_PARTY_MODE": ("party_mode", False),
            "RCLINK_ANY_QR": ("any_qr", True),
            "RCLINK_DEBUG_ENABLED": ("debug_enabled", False),
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val
        for env_key, field_name in _ENV_INT_MAP.items():
            number = _env_number(env, env_key, int)
            if number is not None:
                config_kwargs[field_name] = number
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            number = _env_number(env, env_key, float)
            if number is not None:
                config_kwargs[field_name] = number
        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if field_name not in overrides:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        tokens_env = env.get("RCLINK_ALLOWED_TOKENS")
        if tokens_env is not None and "allowed_tokens" not in overrides:
            config_kwargs["allowed_tokens"] = tuple(t.strip() for t in tokens_env.split(",") if t.strip())

        config_kwargs.update(overrides)

        return cls(**config_kwargs)

    def drive_settings(self, **overrides: Any) -> DriveSettings:
        """Initial drive toggles derived from this configuration."""
        settings = DriveSettings(
            gating_enabled=self.party_mode,
            debug_enabled=self.debug_enabled,
            remote_enabled=self.remote_enabled,
        )
        return dataclasses.replace(settings, **overrides) if overrides else settings
