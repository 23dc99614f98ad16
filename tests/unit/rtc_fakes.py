# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring
from __future__ import annotations

from typing import Any, Sequence

from adapters.rtc.base import EmitEvent, PeerConnection, PeerConnectionFactory
from media.local import LocalStream, MediaAcquisitionError, MediaSource
from negotiation.enums.state import IceState
from negotiation.events import EventType, IceStateChanged, LocalCandidateGathered, RemoteTrackReceived
from protocol.signals import IceCandidate
from signaling.store import MemorySignalingStore


class FakeTrack:
    kind = "audio"

    def __init__(self, label: str = "mic") -> None:
        self.label = label
        self.enabled = True
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakePeerConnection(PeerConnection):
    def __init__(
        self,
        *,
        participant_id: str,
        generation: int,
        receive_only: bool,
        emit_event: EmitEvent,
        fail_on: frozenset[str] = frozenset(),
    ) -> None:
        self.participant_id = participant_id
        self.generation = generation
        self.receive_only = receive_only
        self.tracks: list[Any] = []
        self.remote_descriptions: list[tuple[str, str]] = []
        self.candidates: list[IceCandidate] = []
        self.offers_created = 0
        self.answers_created = 0
        self.closed = False
        self._emit = emit_event
        self.fail_on = fail_on

    def _maybe_fail(self, step: str) -> None:
        if step in self.fail_on:
            raise RuntimeError(f"{step} failed")

    def add_track(self, track: Any) -> None:
        self.tracks.append(track)

    async def set_remote_description(self, kind: str, sdp: str) -> None:
        self._maybe_fail("set_remote_description")
        self.remote_descriptions.append((kind, sdp))

    async def create_offer(self) -> str:
        self._maybe_fail("create_offer")
        self.offers_created += 1
        return f"offer-sdp:{self.participant_id}:{self.generation}"

    async def create_answer(self) -> str:
        self._maybe_fail("create_answer")
        self.answers_created += 1
        return f"answer-sdp:{self.participant_id}:{self.generation}"

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        self._maybe_fail("add_ice_candidate")
        self.candidates.append(candidate)

    async def close(self) -> None:
        self._maybe_fail("close")
        self.closed = True

    # test drivers

    def emit_ice(self, ice_state: IceState, ts_ms: int = 0) -> None:
        self._emit(IceStateChanged(
            event_type=EventType.ICE_STATE_CHANGED,
            ts_ms=ts_ms,
            participant_id=self.participant_id,
            generation=self.generation,
            ice_state=ice_state,
        ))

    def emit_track(self, track: Any) -> None:
        self._emit(RemoteTrackReceived(
            event_type=EventType.REMOTE_TRACK_RECEIVED,
            ts_ms=0,
            participant_id=self.participant_id,
            generation=self.generation,
            track=track,
        ))

    def emit_candidate(self, candidate: str, sdp_mid: str = "0", sdp_mline_index: int = 0) -> None:
        self._emit(LocalCandidateGathered(
            event_type=EventType.LOCAL_CANDIDATE_GATHERED,
            ts_ms=0,
            participant_id=self.participant_id,
            generation=self.generation,
            candidate=candidate,
            sdp_mid=sdp_mid,
            sdp_mline_index=sdp_mline_index,
        ))


class FakePeerFactory(PeerConnectionFactory):
    def __init__(self, *, fail_on: Sequence[str] = ()) -> None:
        self.created: dict[str, list[FakePeerConnection]] = {}
        self.ice_servers: list[Sequence[dict[str, Any]]] = []
        self.fail_on = frozenset(fail_on)

    def create(
        self,
        *,
        participant_id: str,
        generation: int,
        ice_servers: Sequence[dict[str, Any]],
        receive_only: bool,
        emit_event: EmitEvent,
    ) -> FakePeerConnection:
        pc = FakePeerConnection(
            participant_id=participant_id,
            generation=generation,
            receive_only=receive_only,
            emit_event=emit_event,
            fail_on=self.fail_on,
        )
        self.created.setdefault(participant_id, []).append(pc)
        self.ice_servers.append(ice_servers)
        return pc

    def latest(self, participant_id: str) -> FakePeerConnection:
        return self.created[participant_id][-1]


class FakeMediaSource(MediaSource):
    def __init__(self, *, error: MediaAcquisitionError | None = None) -> None:
        self.error = error
        self.streams: list[LocalStream] = []

    async def acquire(self) -> LocalStream:
        if self.error is not None:
            raise self.error
        stream = LocalStream(tracks=[FakeTrack()])
        self.streams.append(stream)
        return stream


async def settle(store: MemorySignalingStore, *managers: Any, rounds: int = 100) -> None:
    """Deliver store notifications and drain every manager until quiet."""
    for _ in range(rounds):
        await store.flush()
        processed = 0
        for manager in managers:
            processed += await manager.drain()
        if processed == 0 and store.idle:
            return
    raise AssertionError("signaling did not settle")
