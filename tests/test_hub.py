from __future__ import annotations

import asyncio
import json

import pytest
from aiohttp import WSMsgType
from aiohttp.test_utils import TestClient, TestServer

from rclink.hub import BroadcastHub
from rclink.models.events import ControlEvent


def _event(steering: int = 90) -> ControlEvent:
    return ControlEvent(ts=1, steering=steering, throttle=90)


async def _wait_for_subscribers(hub: BroadcastHub, count: int) -> None:
    for _ in range(100):
        if hub.subscriber_count == count:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"expected {count} subscribers, have {hub.subscriber_count}")


@pytest.mark.asyncio
async def test_subscribers_receive_broadcast() -> None:
    hub = BroadcastHub(path="/events/")
    async with TestClient(TestServer(hub.build_app())) as client:
        ws_a = await client.ws_connect("/events/")
        ws_b = await client.ws_connect("/events")
        await _wait_for_subscribers(hub, 2)

        delivered = await hub.broadcast(_event(120))

        assert delivered == 2
        for ws in (ws_a, ws_b):
            msg = await ws.receive(timeout=1.0)
            assert msg.type == WSMsgType.TEXT
            payload = json.loads(msg.data)
            assert payload["type"] == "control"
            assert payload["steering"] == 120
        await ws_a.close()
        await ws_b.close()
        await hub.close_subscribers()


@pytest.mark.asyncio
async def test_plain_http_request_gets_400() -> None:
    hub = BroadcastHub()
    async with TestClient(TestServer(hub.build_app())) as client:
        response = await client.get("/events/")
        assert response.status == 400


@pytest.mark.asyncio
async def test_closed_subscriber_is_removed_and_others_still_receive() -> None:
    hub = BroadcastHub()
    async with TestClient(TestServer(hub.build_app())) as client:
        leaving = await client.ws_connect("/events/")
        staying = await client.ws_connect("/events/")
        await _wait_for_subscribers(hub, 2)

        await leaving.close()
        await _wait_for_subscribers(hub, 1)

        assert await hub.broadcast(_event()) == 1
        msg = await staying.receive(timeout=1.0)
        assert json.loads(msg.data)["type"] == "control"
        await staying.close()
        await hub.close_subscribers()


@pytest.mark.asyncio
async def test_publish_preserves_order() -> None:
    hub = BroadcastHub()
    async with TestClient(TestServer(hub.build_app())) as client:
        hub.start_sender()
        ws = await client.ws_connect("/events/")
        await _wait_for_subscribers(hub, 1)

        for steering in (10, 20, 30):
            hub.publish(_event(steering))
        await hub.drain()

        received = [json.loads((await ws.receive(timeout=1.0)).data)["steering"] for _ in range(3)]
        assert received == [10, 20, 30]
        await ws.close()
        await hub.stop()


@pytest.mark.asyncio
async def test_publish_without_sender_is_dropped() -> None:
    hub = BroadcastHub()
    hub.publish(_event())
    await hub.drain()
    assert hub.subscriber_count == 0


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent() -> None:
    hub = BroadcastHub(host="127.0.0.1", port=0)
    await hub.start()
    await hub.start()
    assert hub.is_running is True

    await hub.stop()
    await hub.stop()
    assert hub.is_running is False


@pytest.mark.asyncio
async def test_stop_closes_subscribers_promptly() -> None:
    hub = BroadcastHub(close_timeout=0.2)
    async with TestClient(TestServer(hub.build_app())) as client:
        ws = await client.ws_connect("/events/")
        await _wait_for_subscribers(hub, 1)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await hub.close_subscribers()
        assert loop.time() - started < 1.0

        msg = await ws.receive(timeout=1.0)
        assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED)
        assert hub.subscriber_count == 0


class StalledSubscriber:
    """Stands in for a websocket whose peer stopped reading."""

    def __init__(self) -> None:
        self.closed = False
        self.close_calls = 0

    async def send_str(self, data: str) -> None:
        await asyncio.sleep(3600)

    async def close(self) -> bool:
        self.close_calls += 1
        self.closed = True
        return True


@pytest.mark.asyncio
async def test_stalled_subscriber_is_dropped_and_closed() -> None:
    hub = BroadcastHub(send_timeout=0.05, close_timeout=0.2)
    async with TestClient(TestServer(hub.build_app())) as client:
        healthy = await client.ws_connect("/events/")
        await _wait_for_subscribers(hub, 1)
        stalled = StalledSubscriber()
        hub._subscribers.add(stalled)  # type: ignore[arg-type]

        delivered = await hub.broadcast(_event(45))

        assert delivered == 1
        assert hub.subscriber_count == 1
        assert stalled.close_calls == 1
        msg = await healthy.receive(timeout=1.0)
        assert json.loads(msg.data)["steering"] == 45
        await healthy.close()
        await hub.close_subscribers()
