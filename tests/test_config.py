from __future__ import annotations

import pytest

from rclink.config import DriveSettings, RcLinkConfig
from rclink.exceptions import RcLinkConfigError


def test_defaults() -> None:
    config = RcLinkConfig()
    assert config.baud == 115200
    assert config.remote_url == "ws://localhost:8080/"
    assert (config.hub_port, config.hub_path) == (9091, "/events/")
    assert config.transmit_interval == pytest.approx(0.020)
    assert config.session_seconds == 240
    assert config.debounce_window_ms == 1500


def test_from_env_reads_prefixed_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RCLINK_SERIAL_PORT", "/dev/ttyUSB0")
    monkeypatch.setenv("RCLINK_BAUD", "57600")
    monkeypatch.setenv("RCLINK_PARTY_MODE", "yes")
    monkeypatch.setenv("RCLINK_RECONNECT_DELAY", "2.5")
    monkeypatch.setenv("RCLINK_ALLOWED_TOKENS", " A1 , B2,, ")

    config = RcLinkConfig.from_env()

    assert config.serial_port == "/dev/ttyUSB0"
    assert config.baud == 57600
    assert config.party_mode is True
    assert config.reconnect_delay == pytest.approx(2.5)
    assert config.allowed_tokens == ("A1", "B2")


def test_from_env_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RCLINK_HUB_PORT", "9000")
    monkeypatch.setenv("RCLINK_DEBUG_ENABLED", "true")

    config = RcLinkConfig.from_env(hub_port=9100, debug_enabled=False)

    assert config.hub_port == 9100
    assert config.debug_enabled is False


def test_from_env_rejects_bad_numbers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RCLINK_BAUD", "fast")
    with pytest.raises(RcLinkConfigError):
        RcLinkConfig.from_env()


@pytest.mark.parametrize(
    "kwargs",
    [{"session_seconds": 0}, {"transmit_interval": 0}, {"debounce_window_ms": -1}],
)
def test_invalid_values_rejected(kwargs: dict[str, float]) -> None:
    with pytest.raises(RcLinkConfigError):
        RcLinkConfig(**kwargs)


def test_hub_path_gets_leading_slash() -> None:
    assert RcLinkConfig(hub_path="events/").hub_path == "/events/"


def test_drive_settings_follow_config() -> None:
    config = RcLinkConfig(party_mode=True, remote_enabled=False)
    drive = config.drive_settings(steering_offset=4)

    assert drive.gating_enabled is True
    assert drive.accept_local_input is True
    assert drive.steering_offset == 4
    assert DriveSettings().accept_local_input is False
