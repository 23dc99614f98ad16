# pylint: disable=missing-module-docstring,missing-function-docstring
from typing import Any, Mapping

import pytest

from signaling.channel import SignalingChannel
from signaling.store import MemorySignalingStore


class BrokenStore(MemorySignalingStore):
    async def set(self, path: str, value: Any) -> None:
        raise ConnectionError("store unavailable")

    async def push(self, path: str, value: Any) -> str:
        raise ConnectionError("store unavailable")

    async def update(self, path: str, values: Mapping[str, Any]) -> None:
        raise ConnectionError("store unavailable")

    async def remove(self, path: str) -> None:
        raise ConnectionError("store unavailable")

    async def get(self, path: str) -> Any:
        raise ConnectionError("store unavailable")


async def test_paths_are_scoped_to_the_room(store: MemorySignalingStore) -> None:
    channel = SignalingChannel(store, "room1")

    assert await channel.write_value("status", "waiting")
    key = await channel.push_value("speakRequests", {"type": "speak-request"})
    assert await channel.update_values({"participants/a": {"id": "a"}})

    assert store.snapshot() == {"rooms": {"room1": {
        "status": "waiting",
        "speakRequests": {key: {"type": "speak-request"}},
        "participants": {"a": {"id": "a"}},
    }}}
    assert await channel.read_value("participants/a") == {"id": "a"}

    assert await channel.remove_value()
    assert store.snapshot() == {}


def test_room_id_must_be_a_single_segment(store: MemorySignalingStore) -> None:
    with pytest.raises(ValueError):
        SignalingChannel(store, "room1/other")


async def test_store_failures_are_logged_not_raised(logs: list[dict[str, Any]]) -> None:
    channel = SignalingChannel(BrokenStore(), "room1")

    assert await channel.write_value("status", "live") is False
    assert await channel.push_value("speakRequests", {}) is None
    assert await channel.update_values({"status": "live"}) is False
    assert await channel.remove_value("status") is False
    assert await channel.read_value("status") is None

    failures = [e["event_type"] for e in logs]
    assert failures == [
        "SIGNALING_WRITE_FAILED",
        "SIGNALING_PUSH_FAILED",
        "SIGNALING_UPDATE_FAILED",
        "SIGNALING_REMOVE_FAILED",
        "SIGNALING_READ_FAILED",
    ]
    assert all(e["room_id"] == "room1" for e in logs)


async def test_subscriptions_use_room_paths(store: MemorySignalingStore) -> None:
    channel = SignalingChannel(store, "room1")
    added: list[str] = []
    channel.subscribe_child_added("participants", lambda key, _v: added.append(key))

    await store.set("rooms/room1/participants/a", {"id": "a"})
    await store.set("rooms/room2/participants/b", {"id": "b"})
    await store.flush()

    assert added == ["a"]
