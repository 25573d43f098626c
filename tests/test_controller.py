from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Any

import pytest
import serial

from rclink.config import RcLinkConfig
from rclink.controller import GroundStationController, member_from_token
from rclink.exceptions import DirectiveError
from rclink.models.events import (
    BroadcastEvent,
    ControlEvent,
    PartySessionEvent,
    PartyStateEvent,
    PartyStateReason,
    SessionAction,
)
from rclink.models.notifications import Notification, NotificationKind, NotificationSource
from rclink.settings import SettingsFile


class FakeSerial:
    def __init__(self) -> None:
        self.written: list[bytes] = []
        self.closed = False

    @property
    def in_waiting(self) -> int:
        return 0

    def read(self, size: int = 1) -> bytes:
        if self.closed:
            raise serial.SerialException("closed")
        time.sleep(0.005)
        return b""

    def write(self, data: bytes) -> int:
        self.written.append(bytes(data))
        return len(data)

    def close(self) -> None:
        self.closed = True


class Ports:
    def __init__(self) -> None:
        self.handles: dict[str, FakeSerial] = {}

    def __call__(self, port: str, baud: int, **_kwargs: Any) -> FakeSerial:
        handle = FakeSerial()
        self.handles[port] = handle
        return handle


def _config(**overrides: Any) -> RcLinkConfig:
    base: dict[str, Any] = {
        "serial_port": "COM3",
        "remote_enabled": False,
        "transmit_interval": 0.01,
        "session_seconds": 60,
    }
    base.update(overrides)
    return RcLinkConfig(**base)


class Recorder:
    def __init__(self) -> None:
        self.events: list[BroadcastEvent] = []

    def __call__(self, event: BroadcastEvent) -> None:
        self.events.append(event)

    def states(self) -> list[PartyStateEvent]:
        return [e for e in self.events if isinstance(e, PartyStateEvent)]

    def sessions(self) -> list[PartySessionEvent]:
        return [e for e in self.events if isinstance(e, PartySessionEvent)]

    def controls(self) -> list[ControlEvent]:
        return [e for e in self.events if isinstance(e, ControlEvent)]


async def _settle(controller: GroundStationController, seconds: float = 0.05) -> None:
    await asyncio.sleep(seconds)
    await controller.drain()


def test_member_from_token() -> None:
    assert member_from_token('{"member": " Ana "}') == "Ana"
    assert member_from_token('{"name": "Bo"}') == "Bo"
    assert member_from_token('{"member": 7}') is None
    assert member_from_token("PLAIN-TOKEN") is None
    assert member_from_token("[1]") is None


@pytest.mark.asyncio
async def test_startup_publishes_state_and_connects() -> None:
    ports = Ports()
    recorder = Recorder()
    controller = GroundStationController(_config(), serial_factory=ports, on_event=recorder, serve_hub=False)

    async with controller:
        await _settle(controller)
        assert controller.link.is_connected is True
        assert recorder.states()[0].reason == PartyStateReason.STARTUP
        assert ports.handles["COM3"].written[0] == b"S090T090\n"

    assert ports.handles["COM3"].closed is True


@pytest.mark.asyncio
async def test_party_mode_locks_until_scan() -> None:
    ports = Ports()
    recorder = Recorder()
    controller = GroundStationController(
        _config(party_mode=True),
        serial_factory=ports,
        on_event=recorder,
        serve_hub=False,
    )

    async with controller:
        controller.arbiter.update_local(120, 70)
        await _settle(controller)
        written = ports.handles["COM3"].written
        assert written == [b"S090T090\n"]
        assert recorder.controls() == []

        assert controller.simulate_scan('{"member": "Ana", "id": 1}') is True
        await _settle(controller)

        sessions = recorder.sessions()
        assert [s.action for s in sessions[:2]] == [SessionAction.STARTED, SessionAction.TICK]
        assert sessions[0].member == "Ana"
        assert sessions[0].source == "simulated"
        assert sessions[0].session_seconds == 60
        assert PartyStateReason.SESSION_STARTED in [s.reason for s in recorder.states()]
        assert b"S120T070\n" in written
        assert recorder.controls()[-1].steering == 120

        assert controller.stop_session() is True
        await _settle(controller)
        assert recorder.sessions()[-1].action == SessionAction.ENDED
        assert recorder.states()[-1].reason == PartyStateReason.SESSION_ENDED
        assert written[-1] == b"S090T090\n"


@pytest.mark.asyncio
async def test_restricted_tokens_are_rejected() -> None:
    recorder = Recorder()
    controller = GroundStationController(
        _config(party_mode=True, any_qr=False, allowed_tokens=("GOOD",)),
        serial_factory=Ports(),
        on_event=recorder,
        serve_hub=False,
    )

    async with controller:
        assert controller.simulate_scan("BAD") is False
        assert recorder.states()[-1].reason == PartyStateReason.QR_REJECTED
        assert controller.gate.is_active is False

        assert controller.simulate_scan("GOOD") is True
        assert controller.gate.is_active is True


@pytest.mark.asyncio
async def test_scans_are_ignored_when_party_mode_off() -> None:
    controller = GroundStationController(_config(), serial_factory=Ports(), serve_hub=False)
    async with controller:
        assert controller.simulate_scan("ANY") is False
        assert controller.gate.is_active is False


@pytest.mark.asyncio
async def test_scanner_input_starts_session() -> None:
    recorder = Recorder()
    controller = GroundStationController(
        _config(party_mode=True, scanner_port="COM7"),
        serial_factory=Ports(),
        on_event=recorder,
        serve_hub=False,
    )

    async with controller:
        await _settle(controller)
        assert recorder.states()[-1].scanner_connected is True
        assert recorder.states()[-1].scanner_port == "COM7"

        controller.scanner.feed(b"TICKET-9\n")
        controller.scanner.feed(b"TICKET-9\n")
        await _settle(controller)

        started = [s for s in recorder.sessions() if s.action == SessionAction.STARTED]
        assert len(started) == 1
        assert started[0].qr_payload == "TICKET-9"
        assert started[0].source == "scanner"


@pytest.mark.asyncio
async def test_remote_samples_reach_the_arbiter() -> None:
    controller = GroundStationController(_config(), serial_factory=Ports(), serve_hub=False)
    async with controller:
        await controller.set_remote_enabled(True)
        await controller.remote.stop()
        controller.remote.process_message('{"steering": 0, "throttle": 65535}')
        await controller.drain()

        assert controller.arbiter.remote_sample.steering == 0
        assert controller.arbiter.remote_sample.throttle == 0


@pytest.mark.asyncio
async def test_toggles_publish_and_persist(tmp_path: Path) -> None:
    path = tmp_path / "settings.ini"
    path.write_text("WebSocketEnabled=False\nSteeringOffset=2\n", encoding="utf-8")
    recorder = Recorder()
    controller = GroundStationController(
        _config(),
        settings_file=SettingsFile(path),
        serial_factory=Ports(),
        on_event=recorder,
        serve_hub=False,
    )

    async with controller:
        assert controller.drive_settings.steering_offset == 2

        controller.set_party_mode(True)
        controller.set_any_qr(False)
        controller.set_debug(True)
        controller.update_drive(reverse_steering=True, steering_offset=-3)

        reasons = [s.reason for s in recorder.states()]
        assert reasons[-3:] == [PartyStateReason.MODE, PartyStateReason.ANY_QR, PartyStateReason.DEBUG]
        assert recorder.states()[-1].debug_enabled is True

    text = path.read_text(encoding="utf-8")
    assert "PartyMode=True" in text
    assert "AnyQr=False" in text
    assert "DebugEnabled=True" in text
    assert "ReverseSteering=True" in text
    assert "SteeringOffset=-3" in text
    assert "Port=COM3" in text


@pytest.mark.asyncio
async def test_mac_directives_go_through_link(tmp_path: Path) -> None:
    ports = Ports()
    path = tmp_path / "settings.ini"
    path.write_text("WebSocketEnabled=False\n", encoding="utf-8")
    controller = GroundStationController(
        _config(),
        settings_file=SettingsFile(path),
        serial_factory=ports,
        serve_hub=False,
    )

    async with controller:
        with pytest.raises(DirectiveError):
            controller.set_mac_range(5, 1)
        assert controller.set_mac_range(1, 5) is True
        assert controller.select_mac(3) is True
        assert controller.query_active_mac() is True

        written = ports.handles["COM3"].written
        assert b"MACLIST 1 5\n" in written
        assert b"MACSELECT 3\n" in written
        assert b"MACACTIVE?\n" in written

    text = path.read_text(encoding="utf-8")
    assert "StartIndex=1" in text
    assert "EndIndex=5" in text


@pytest.mark.asyncio
async def test_notifications_are_forwarded_in_order() -> None:
    received: list[Notification] = []
    controller = GroundStationController(
        _config(serial_port=None),
        serial_factory=Ports(),
        on_notification=received.append,
        serve_hub=False,
    )

    async with controller:
        ok, _ = await controller.connect_serial("COM4")
        assert ok is True
        controller.link.dispatch_line("MACACTIVE 1 AA:BB 3")
        await controller.drain()

    kinds = [(n.source, n.kind) for n in received]
    assert (NotificationSource.SERIAL, NotificationKind.STATUS) in kinds
    assert (NotificationSource.SERIAL, NotificationKind.ACK) in kinds
    assert kinds.index((NotificationSource.SERIAL, NotificationKind.STATUS)) < kinds.index(
        (NotificationSource.SERIAL, NotificationKind.ACK)
    )


@pytest.mark.asyncio
async def test_control_events_reach_hub_subscribers() -> None:
    controller = GroundStationController(
        _config(hub_host="127.0.0.1", hub_port=0),
        serial_factory=Ports(),
    )

    async with controller:
        assert controller.hub.is_running is True
        controller.arbiter.update_local(100, 100)
        await _settle(controller)
        event = controller.arbiter.last_event
        assert event is not None
        assert json.loads(event.to_json())["steering"] == 100


@pytest.mark.asyncio
async def test_environment_toggles_survive_missing_settings_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("RCLINK_REMOTE_ENABLED", "0")
    monkeypatch.setenv("RCLINK_PARTY_MODE", "1")
    config = RcLinkConfig.from_env(serial_port="COM3", transmit_interval=0.01)
    ports = Ports()
    controller = GroundStationController(
        config,
        settings_file=SettingsFile(tmp_path / "missing.ini"),
        serial_factory=ports,
        serve_hub=False,
    )

    assert controller.config.party_mode is True
    assert controller.config.remote_enabled is False
    assert controller.drive_settings.gating_enabled is True
    assert controller.drive_settings.remote_enabled is False

    async with controller:
        await _settle(controller)
        assert controller.remote.is_running is False
        assert ports.handles["COM3"].written == [b"S090T090\n"]


@pytest.mark.asyncio
async def test_remote_toggle_before_start_does_not_start_ingest() -> None:
    controller = GroundStationController(_config(remote_enabled=True), serial_factory=Ports(), serve_hub=False)

    await controller.set_remote_enabled(False)
    assert controller.remote.is_running is False
    await controller.set_remote_enabled(True)
    assert controller.remote.is_running is False
    await controller.set_remote_enabled(False)

    async with controller:
        assert controller.drive_settings.remote_enabled is False
        assert controller.remote.is_running is False
