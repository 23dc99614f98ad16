# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio
from typing import Any, AsyncIterator, Callable

import pytest
import uvicorn

from config import AppConfig
from server.app import create_app
from signaling.remote_store import SignalingConnectionError, WebSocketSignalingStore


@pytest.fixture
async def server_url() -> AsyncIterator[str]:
    app = create_app(AppConfig(stun_urls=("stun:test",)), purge_interval_s=0)
    server = uvicorn.Server(uvicorn.Config(app, host="127.0.0.1", port=0, log_level="warning"))
    task = asyncio.create_task(server.serve())
    while not server.started:
        await asyncio.sleep(0.01)
    port = server.servers[0].sockets[0].getsockname()[1]
    yield f"ws://127.0.0.1:{port}"
    server.should_exit = True
    await task


async def wait_for(predicate: Callable[[], bool], timeout_s: float = 5.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout_s)


async def test_requires_connection_and_room_paths() -> None:
    store = WebSocketSignalingStore("ws://unused", "room1")

    with pytest.raises(SignalingConnectionError):
        await store.set("rooms/room1/status", "live")
    with pytest.raises(SignalingConnectionError):
        store.on_value("rooms/room2/status", lambda _v: None)


async def test_reads_writes_and_subscriptions_over_the_bridge(server_url: str) -> None:
    writer = WebSocketSignalingStore(server_url, "room1")
    reader = WebSocketSignalingStore(server_url, "room1")
    await writer.connect()
    await reader.connect()
    try:
        assert writer.ice_servers == [{"urls": ["stun:test"]}]

        added: list[tuple[str, Any]] = []
        statuses: list[Any] = []
        reader.on_child_added("rooms/room1/participants", lambda k, v: added.append((k, v)))
        unsubscribe = reader.on_value("rooms/room1/status", statuses.append)
        await wait_for(lambda: statuses == [None])

        await writer.update("rooms/room1", {"status": "waiting", "participants/host-1": {"id": "host-1"}})
        key = await writer.push("rooms/room1/speakRequests", {"participantId": "p"})

        await wait_for(lambda: added == [("host-1", {"id": "host-1"})] and statuses[-1] == "waiting")
        assert await reader.get(f"rooms/room1/speakRequests/{key}") == {"participantId": "p"}

        unsubscribe()
        await asyncio.sleep(0.05)
        await writer.set("rooms/room1/status", "live")
        await writer.remove("rooms/room1/participants/host-1")
        await asyncio.sleep(0.05)
        assert statuses == [None, "waiting"]
        assert await reader.get("rooms/room1/status") == "live"
    finally:
        await writer.close()
        await reader.close()


async def test_server_errors_surface_as_connection_errors(server_url: str) -> None:
    store = WebSocketSignalingStore(server_url, "room1")
    await store.connect()
    try:
        with pytest.raises(SignalingConnectionError):
            await store.update("rooms/room1", {"bad.key": 1})
    finally:
        await store.close()
