from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from rclink.models.control import CommandFrame, ControlSource, RemoteControlPayload
from rclink.models.events import (
    ControlEvent,
    EventClock,
    PartySessionEvent,
    PartyStateEvent,
    PartyStateReason,
    SessionAction,
)
from rclink.models.notifications import Notification, NotificationKind, NotificationSource


def test_full_throttle_full_right() -> None:
    payload = RemoteControlPayload.model_validate({"steering": 65535, "throttle": 65535, "brake": 0})
    assert payload.steering180 == 180
    assert payload.throttle180 == 0


def test_full_brake_full_left() -> None:
    payload = RemoteControlPayload.model_validate({"steering": 0, "throttle": 0, "brake": 65535})
    assert payload.steering180 == 0
    assert payload.throttle180 == 180


def test_missing_fields_default_to_neutral() -> None:
    payload = RemoteControlPayload.model_validate({})
    assert payload.steering == 32767
    assert payload.steering180 == 90
    assert payload.throttle180 == 90


def test_out_of_range_raw_values_are_clamped() -> None:
    payload = RemoteControlPayload.model_validate({"steering": 70000, "throttle": -5})
    assert payload.steering == 65535
    assert payload.throttle == 0


@pytest.mark.parametrize("value", ["100", 1.5, True, None])
def test_non_integer_raw_values_are_rejected(value: object) -> None:
    with pytest.raises(ValidationError):
        RemoteControlPayload.model_validate({"steering": value})


def test_to_sample_carries_raw_values() -> None:
    sample = RemoteControlPayload(steering=0, throttle=1000, brake=200).to_sample()
    assert sample.source == ControlSource.REMOTE
    assert (sample.steering_raw, sample.throttle_raw, sample.brake_raw) == (0, 1000, 200)


def test_command_frame_text() -> None:
    assert CommandFrame.clamped(3, 200).text == "S003T180"
    assert CommandFrame.neutral().encode() == b"S090T090\n"


def test_control_event_wire_shape() -> None:
    event = ControlEvent(ts=5, steering=10, throttle=20, brake=0, steering_raw=1, debug_enabled=True)
    wire = json.loads(event.to_json())
    assert wire["type"] == "control"
    assert wire["version"] == "1"
    assert wire["steeringRaw"] == 1
    assert wire["throttleRaw"] is None
    assert wire["debugEnabled"] is True


def test_party_events_use_dashboard_keys() -> None:
    state = PartyStateEvent(
        ts=1,
        reason=PartyStateReason.ANY_QR,
        mode_enabled=True,
        session_active=False,
        remaining_ms=0,
        any_qr=False,
        scanner_connected=True,
        scanner_port="COM7",
    ).to_wire()
    assert state["type"] == "partyday.state"
    assert state["reason"] == "any-qr"
    assert state["scannerPort"] == "COM7"

    session = PartySessionEvent(
        ts=2,
        action=SessionAction.STARTED,
        member="Ana",
        qr_payload="ABC",
        session_seconds=240,
        remaining_ms=240000,
        session_active=True,
        mode_enabled=True,
    ).to_wire()
    assert session["type"] == "partyday.session"
    assert session["qrPayload"] == "ABC"
    assert session["sessionSeconds"] == 240


def test_event_clock_never_goes_backwards() -> None:
    readings = iter([10.0, 9.0, 11.5])
    clock = EventClock(lambda: next(readings))
    assert clock.now_ms() == 10000
    assert clock.now_ms() == 10000
    assert clock.now_ms() == 11500


def test_notification_message_is_stripped() -> None:
    note = Notification.status(NotificationSource.SERIAL, "  Connected \n", connected=True)
    assert note.kind == NotificationKind.STATUS
    assert note.message == "Connected"
    assert note.data == {"connected": True}
