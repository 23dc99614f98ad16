# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring
from __future__ import annotations

import json
import random
from typing import Any, AsyncIterator, Callable

import pytest

from directory.service import SessionDirectory
from directory.store import MemoryDocumentStore
from observability import logger
from signaling.store import MemorySignalingStore


class FakeClock:
    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


@pytest.fixture(autouse=True)
def logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Every JSONL event emitted during the test, decoded."""
    captured: list[dict[str, Any]] = []
    monkeypatch.setattr(logger, "_print", lambda line: captured.append(json.loads(line)))
    return captured


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemorySignalingStore:
    return MemorySignalingStore()


@pytest.fixture
def documents() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def directory(documents: MemoryDocumentStore, clock: FakeClock) -> SessionDirectory:
    return SessionDirectory(documents, clock=clock, rng=random.Random(7))


@pytest.fixture
def seed_session(documents: MemoryDocumentStore) -> Callable[..., Any]:
    async def seed(session_id: str = "room1", **fields: Any) -> None:
        data: dict[str, Any] = {
            "title": "Morning Show",
            "hostId": "host-1",
            "hostName": "Ada",
            "speaker": "Ada",
            "status": "approved",
            "approved": True,
            "participantCount": 0,
            "maxParticipants": 2,
            "createdAt": 1,
        }
        data.update(fields)
        await documents.set("podcasts", session_id, data)
    return seed


@pytest.fixture
async def running() -> AsyncIterator[list[Any]]:
    """Session managers appended here are stopped at teardown."""
    managers: list[Any] = []
    yield managers
    for manager in managers:
        await manager.stop()
