"""
Runtime execution shell shared by the host and listener session managers.

Responsibilities:
- Own one PeerState per counterpart and the live connection map
- Own the single inbound event queue and drain it serially
- Call the pure reducer
- Execute commands with side effects (peer connections, channel writes,
  playback, timers, logging)
- Convert adapter failures and timer expiry into events

Non-responsibilities:
- Presence, speak requests, directory mirroring (session managers)
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Sequence

from adapters.rtc.base import PeerConnection, PeerConnectionFactory
from media.local import LocalStream
from media.playback import PlaybackRegistry
from negotiation.commands import (
    AddIceCandidate,
    ApplyRemoteDescription,
    CancelTimer,
    ClosePeer,
    Command,
    CreateAnswer,
    CreateOffer,
    CreatePeer,
    ForgetMessage,
    LogEvent,
    PushSignal,
    ReleasePeer,
    StartPlayback,
    StartTimer,
    StopPlayback,
    WriteSignal,
)
from negotiation.dedup import ProcessedMessages
from negotiation.enums.state import NegotiationState
from negotiation.events import (
    Event,
    EventType,
    LocalDescriptionReady,
    NegotiationFailed,
    NegotiationTimeout,
    PeerEvent,
    RemoteDescriptionApplied,
    TeardownRequested,
)
from negotiation.reducer import reduce
from negotiation.state_dataclass import PeerState
from observability.logger import BoundLogger, now_ms
from observability.metrics import record_value
from protocol.presence import Role
from signaling.channel import SignalingChannel
from spec import NEGOTIATION_TIMEOUT_MS


class NegotiationRuntime:
    """
    Runtime execution boundary for one manager (host or listener).

    Guarantees:
    - Every event goes through submit() -> queue -> _process()
    - The reducer is called exactly once per peer event
    - The connection map is mutated only while processing an event
    - Side effects occur after the new state has been stored
    """

    def __init__(
        self,
        *,
        room_id: str,
        local_id: str,
        role: Role,
        channel: SignalingChannel,
        peer_factory: PeerConnectionFactory,
        playback: PlaybackRegistry | None = None,
        ice_servers: Sequence[dict[str, Any]] = (),
        negotiation_timeout_ms: int = NEGOTIATION_TIMEOUT_MS,
        processed: ProcessedMessages | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.room_id = room_id
        self.local_id = local_id
        self.role = role
        self.channel = channel
        self.playback = playback or PlaybackRegistry()
        self.local_stream: LocalStream | None = None

        self._factory = peer_factory
        self._ice_servers = list(ice_servers)
        self._negotiation_timeout_ms = negotiation_timeout_ms
        self._processed = processed or ProcessedMessages()
        self._clock = clock

        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._peers: dict[str, PeerState] = {}
        self._connections: dict[str, PeerConnection] = {}
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._runner: asyncio.Task[None] | None = None
        # Held while an event is processed; public manager operations take it too
        self._lock = asyncio.Lock()

        self.log = BoundLogger(room_id=room_id, local_id=local_id, role=role.value)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def peer_state(self, participant_id: str) -> PeerState | None:
        return self._peers.get(participant_id)

    def connection(self, participant_id: str) -> PeerConnection | None:
        return self._connections.get(participant_id)

    def connection_ids(self) -> set[str]:
        return set(self._connections)

    def connected_participants(self) -> set[str]:
        return {
            pid for pid, state in self._peers.items()
            if state.negotiation is NegotiationState.STABLE
        }

    @property
    def pending_events(self) -> int:
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def submit(self, event: Event) -> None:
        """Enqueue an event. Safe to call from channel and adapter callbacks."""
        self._queue.put_nowait(event)

    async def drain(self) -> int:
        """Process queued events until the queue is empty. Returns the count."""
        processed = 0
        while not self._queue.empty():
            event = self._queue.get_nowait()
            await self._process(event)
            processed += 1
        return processed

    def start(self) -> None:
        """Start the background task draining the queue."""
        if self._runner is None or self._runner.done():
            self._runner = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._process(event)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self.log({
                    "event_type": "RUNTIME_EVENT_ERROR",
                    "source_event": event.event_type.value,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })

    async def _process(self, event: Event) -> None:
        async with self._lock:
            if isinstance(event, PeerEvent):
                await self._dispatch_peer(event)
            else:
                await self._handle_room_event(event)

    async def _handle_room_event(self, event: Event) -> None:
        """Presence / room events; implemented by the session managers."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Reducer dispatch
    # ------------------------------------------------------------------

    async def _dispatch_peer(self, event: PeerEvent) -> None:
        state = self._peers.get(event.participant_id) or PeerState(
            participant_id=event.participant_id,
            local_id=self.local_id,
            role=self.role,
        )
        new_state, commands = reduce(
            state,
            event,
            negotiation_timeout_ms=self._negotiation_timeout_ms,
        )
        self._peers[event.participant_id] = new_state

        for cmd in commands:
            await self._execute_command(cmd)

    async def teardown_peer(self, participant_id: str, reason: str) -> None:
        """Tear one connection down now. Caller holds the processing lock."""
        await self._dispatch_peer(TeardownRequested(
            event_type=EventType.TEARDOWN_REQUESTED,
            ts_ms=self._clock(),
            participant_id=participant_id,
            reason=reason,
        ))

    async def teardown_all(self, reason: str) -> None:
        for participant_id in list(self._peers):
            await self.teardown_peer(participant_id, reason)

    def forget_peer(self, participant_id: str) -> None:
        """Drop all per-peer state once the counterpart is gone for good."""
        self._peers.pop(participant_id, None)

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    def _connection_for(self, participant_id: str, generation: int) -> PeerConnection | None:
        pc = self._connections.get(participant_id)
        if pc is None or pc.generation != generation:
            return None
        return pc

    def _fail(self, participant_id: str, generation: int, stage: str, exc: Exception) -> None:
        self.submit(NegotiationFailed(
            event_type=EventType.NEGOTIATION_FAILED,
            ts_ms=self._clock(),
            participant_id=participant_id,
            generation=generation,
            stage=stage,
            reason=f"{type(exc).__name__}: {exc}",
        ))

    async def _execute_command(self, cmd: Command) -> None:  # pylint: disable=too-many-branches
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            self.log(cmd.event)
            negotiation_ms = cmd.event["details"].get("negotiation_ms")
            if cmd.event["decision"] == "peer_connected" and negotiation_ms is not None:
                record_value(
                    "negotiation",
                    negotiation_ms,
                    room_id=self.room_id,
                    participant_id=cmd.event["participant_id"],
                    details={"generation": cmd.event["generation"]},
                )

        elif isinstance(cmd, CreatePeer):
            await self._create_peer(cmd)

        elif isinstance(cmd, ApplyRemoteDescription):
            pc = self._connection_for(cmd.participant_id, cmd.generation)
            if pc is None:
                self._log_skipped(cmd)
                return
            try:
                await pc.set_remote_description(cmd.kind, cmd.sdp)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self._fail(cmd.participant_id, cmd.generation, "set_remote_description", exc)
                return
            self.submit(RemoteDescriptionApplied(
                event_type=EventType.REMOTE_DESCRIPTION_APPLIED,
                ts_ms=self._clock(),
                participant_id=cmd.participant_id,
                generation=cmd.generation,
            ))

        elif isinstance(cmd, (CreateOffer, CreateAnswer)):
            await self._create_local_description(cmd)

        elif isinstance(cmd, AddIceCandidate):
            pc = self._connection_for(cmd.participant_id, cmd.generation)
            if pc is None:
                self._log_skipped(cmd)
                return
            try:
                await pc.add_ice_candidate(cmd.candidate)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                # A single bad candidate does not fail the negotiation
                self.log({
                    "event_type": "ICE_CANDIDATE_REJECTED",
                    "participant_id": cmd.participant_id,
                    "generation": cmd.generation,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })

        elif isinstance(cmd, ClosePeer):
            pc = self._connection_for(cmd.participant_id, cmd.generation)
            if pc is not None:
                await self._close_quietly(pc, cmd.participant_id)

        elif isinstance(cmd, ReleasePeer):
            if self._connection_for(cmd.participant_id, cmd.generation) is not None:
                del self._connections[cmd.participant_id]
            self.log({
                "event_type": "PEER_RELEASED",
                "participant_id": cmd.participant_id,
                "generation": cmd.generation,
                "reason": cmd.reason,
            })
            await self._on_peer_released(cmd.participant_id, cmd.reason)

        elif isinstance(cmd, WriteSignal):
            await self.channel.write_value(cmd.path, cmd.payload)

        elif isinstance(cmd, PushSignal):
            await self.channel.push_value(cmd.path, cmd.payload)

        elif isinstance(cmd, ForgetMessage):
            self._processed.forget(cmd.message_id)

        elif isinstance(cmd, StartPlayback):
            self.playback.attach(cmd.participant_id, cmd.track)

        elif isinstance(cmd, StopPlayback):
            self.playback.detach(cmd.participant_id)

        elif isinstance(cmd, StartTimer):
            self._start_timer(cmd)

        elif isinstance(cmd, CancelTimer):
            self._cancel_timer(cmd.timer_id)

        else:
            raise TypeError(f"Unhandled command type: {type(cmd).__name__}")

    async def _close_quietly(self, pc: PeerConnection, participant_id: str) -> None:
        try:
            await pc.close()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self.log({
                "event_type": "PEER_CLOSE_FAILED",
                "participant_id": participant_id,
                "generation": pc.generation,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    async def _create_peer(self, cmd: CreatePeer) -> None:
        stale = self._connections.pop(cmd.participant_id, None)
        if stale is not None:
            await self._close_quietly(stale, cmd.participant_id)

        try:
            pc = self._factory.create(
                participant_id=cmd.participant_id,
                generation=cmd.generation,
                ice_servers=self._ice_servers,
                receive_only=not cmd.send_audio,
                emit_event=self.submit,
            )
            if cmd.send_audio and self.local_stream is not None:
                for track in self.local_stream.audio_tracks():
                    pc.add_track(track)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._fail(cmd.participant_id, cmd.generation, "create_peer", exc)
            return

        self._connections[cmd.participant_id] = pc

    async def _create_local_description(self, cmd: CreateOffer | CreateAnswer) -> None:
        pc = self._connection_for(cmd.participant_id, cmd.generation)
        if pc is None:
            self._log_skipped(cmd)
            return

        kind = "offer" if isinstance(cmd, CreateOffer) else "answer"
        try:
            sdp = await (pc.create_offer() if kind == "offer" else pc.create_answer())
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._fail(cmd.participant_id, cmd.generation, f"create_{kind}", exc)
            return

        self.submit(LocalDescriptionReady(
            event_type=EventType.LOCAL_DESCRIPTION_READY,
            ts_ms=self._clock(),
            participant_id=cmd.participant_id,
            generation=cmd.generation,
            kind=kind,
            sdp=sdp,
        ))

    async def _on_peer_released(self, participant_id: str, reason: str) -> None:
        """Hook for managers reacting to a released connection."""

    def _log_skipped(self, cmd: Command) -> None:
        self.log({
            "event_type": "COMMAND_SKIPPED",
            "command_type": cmd.command_type.value,
            "participant_id": getattr(cmd, "participant_id", None),
            "generation": getattr(cmd, "generation", None),
            "reason": "stale_connection",
        })

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _start_timer(self, cmd: StartTimer) -> None:
        """
        Start or replace a timer.

        Timer tasks re-enter the queue when they expire, keeping submit()
        the single event entry point.
        """
        self._cancel_timer(cmd.timer_id)

        async def _timer_task() -> None:
            await asyncio.sleep(cmd.duration_ms / 1000.0)
            self._timers.pop(cmd.timer_id, None)
            self.submit(self._construct_timeout_event(cmd))

        self._timers[cmd.timer_id] = asyncio.create_task(_timer_task())

    def _construct_timeout_event(self, cmd: StartTimer) -> Event:
        if cmd.timeout_event_type is EventType.NEGOTIATION_TIMEOUT:
            return NegotiationTimeout(
                event_type=EventType.NEGOTIATION_TIMEOUT,
                ts_ms=self._clock(),
                participant_id=cmd.participant_id,
                generation=cmd.generation,
            )
        raise ValueError(f"Unsupported timeout event type: {cmd.timeout_event_type}")

    def _cancel_timer(self, timer_id: str) -> None:
        task = self._timers.pop(timer_id, None)
        if task is not None:
            task.cancel()

    @property
    def active_timers(self) -> set[str]:
        return set(self._timers)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Cancel timers and the queue runner; close leftover connections."""
        tasks = list(self._timers.values())
        for timer_id in list(self._timers):
            self._cancel_timer(timer_id)

        if self._runner is not None:
            self._runner.cancel()
            tasks.append(self._runner)
            self._runner = None

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for pc in list(self._connections.values()):
            await pc.close()
        self._connections.clear()
