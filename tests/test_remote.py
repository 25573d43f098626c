from __future__ import annotations

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from rclink.models.control import ControlSample
from rclink.models.notifications import Notification, NotificationKind
from rclink.remote import STATUS_CONNECTED, STATUS_CONNECTING, RemoteControlIngest


def _statuses(notes: list[Notification]) -> list[str]:
    return [n.message for n in notes if n.kind == NotificationKind.STATUS]


def _samples(notes: list[Notification]) -> list[ControlSample]:
    return [n.data["sample"] for n in notes if n.kind == NotificationKind.CONTROL]


def test_process_message_normalizes_full_throttle() -> None:
    notes: list[Notification] = []
    ingest = RemoteControlIngest(on_notify=notes.append)

    sample = ingest.process_message('{"steering":65535,"throttle":65535,"brake":0}')

    assert sample is not None
    assert (sample.steering, sample.throttle) == (180, 0)
    assert _samples(notes) == [sample]
    assert ingest.last_raw == (65535, 65535, 0)


def test_process_message_normalizes_full_brake() -> None:
    ingest = RemoteControlIngest()
    sample = ingest.process_message('{"steering":0,"throttle":0,"brake":65535}')
    assert sample is not None
    assert (sample.steering, sample.throttle) == (0, 180)


@pytest.mark.parametrize(
    "message",
    ["not json", "[1, 2, 3]", '{"steering": "left"}', '{"throttle": 12.5}'],
)
def test_parse_error_keeps_last_good_sample(message: str) -> None:
    notes: list[Notification] = []
    ingest = RemoteControlIngest(on_notify=notes.append)
    good = ingest.process_message('{"steering": 0}')

    assert ingest.process_message(message) is None

    assert ingest.last_sample == good
    assert _statuses(notes)[-1].startswith("Parse error: ")
    assert len(_samples(notes)) == 1


@pytest.mark.asyncio
async def test_ingest_receives_and_reconnects() -> None:
    connections = 0

    async def handler(request: web.Request) -> web.WebSocketResponse:
        nonlocal connections
        connections += 1
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        await ws.send_str('{"steering":65535,"throttle":65535}')
        await ws.close()
        return ws

    app = web.Application()
    app.router.add_get("/", handler)
    notes: list[Notification] = []

    async with TestServer(app) as server:
        ingest = RemoteControlIngest(
            str(server.make_url("/")).replace("http://", "ws://"),
            on_notify=notes.append,
            reconnect_delay=0.01,
        )
        ingest.start()
        for _ in range(200):
            if connections >= 2 and len(_samples(notes)) >= 2:
                break
            await asyncio.sleep(0.01)
        await ingest.stop()

    statuses = _statuses(notes)
    assert statuses[0] == STATUS_CONNECTING
    assert STATUS_CONNECTED in statuses
    assert "Reconnecting in 0 seconds..." in statuses
    assert connections >= 2
    assert _samples(notes)[0].steering == 180
    assert ingest.is_running is False


@pytest.mark.asyncio
async def test_connect_failure_is_reported_and_retried() -> None:
    notes: list[Notification] = []
    ingest = RemoteControlIngest("ws://127.0.0.1:9/", on_notify=notes.append, reconnect_delay=0.01)

    ingest.start()
    for _ in range(200):
        if sum(1 for s in _statuses(notes) if s.startswith("Error: ")) >= 2:
            break
        await asyncio.sleep(0.01)
    await ingest.stop()

    assert sum(1 for s in _statuses(notes) if s.startswith("Error: ")) >= 2
    assert ingest.is_connected is False


@pytest.mark.asyncio
async def test_stop_interrupts_backoff_immediately() -> None:
    ingest = RemoteControlIngest("ws://127.0.0.1:9/", reconnect_delay=30)
    ingest.start()
    await asyncio.sleep(0.05)

    loop = asyncio.get_running_loop()
    started = loop.time()
    await ingest.stop()
    assert loop.time() - started < 1.0
