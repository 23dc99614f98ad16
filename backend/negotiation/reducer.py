"""
Pure per-peer negotiation reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

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
from negotiation.enums.state import IceState, NegotiationState
from negotiation.events import (
    AdapterEvent,
    AnswerReceived,
    Event,
    EventType,
    IceStateChanged,
    LocalCandidateGathered,
    LocalDescriptionReady,
    NegotiationFailed,
    NegotiationTimeout,
    OfferReceived,
    RemoteCandidateReceived,
    RemoteDescriptionApplied,
    RemoteTrackReceived,
    StartNegotiation,
    TeardownRequested,
)
from negotiation.state_dataclass import PeerState
from protocol import paths
from protocol.presence import Role
from protocol.signals import Answer, IceCandidate, Offer, encode_signal
from spec import NEGOTIATION_TIMEOUT_MS


# =============================================================================
# Timer IDs
# =============================================================================

TIMER_NEGOTIATION_PREFIX = "negotiation"


def negotiation_timer_id(participant_id: str) -> str:
    return f"{TIMER_NEGOTIATION_PREFIX}:{participant_id}"


def answer_id_for(offer_id: str) -> str:
    return f"{offer_id}:answer"


# =============================================================================
# Small helpers
# =============================================================================

Result = tuple[PeerState, tuple[Command, ...]]


def _log(
    state: PeerState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "participant_id": state.participant_id,
            "generation": state.generation,
            "negotiation": state.negotiation.value,
            "ice": state.ice.value,
            "negotiation_id": state.negotiation_id,
            "event_type": event.event_type.value,
            "decision": decision,
            "details": details or {},
        }
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + state_change_logs + logs)


def _ignore(state: PeerState, event: Event, reason: str) -> Result:
    return state, (_log(state, event, "ignore", {"reason": reason}),)


def _state_changed(
    old: PeerState, new: PeerState, event: Event, source: str
) -> tuple[Command, ...]:
    if old.negotiation is new.negotiation:
        return ()
    return (
        _log(
            new,
            event,
            "state_changed",
            {
                "from_state": old.negotiation.value,
                "to_state": new.negotiation.value,
                "source": source,
            },
        ),
    )


def _signal_peer_id(state: PeerState) -> str:
    """Listener id owning the webrtc/{id} subtree for this connection."""
    return state.participant_id if state.role is Role.HOST else state.local_id


def _matches_round(candidate: IceCandidate, negotiation_id: str | None) -> bool:
    return candidate.negotiation_id is None or candidate.negotiation_id == negotiation_id


def _start_timer(state: PeerState, timeout_ms: int) -> StartTimer:
    return StartTimer(
        timer_id=negotiation_timer_id(state.participant_id),
        duration_ms=timeout_ms,
        timeout_event_type=EventType.NEGOTIATION_TIMEOUT,
        participant_id=state.participant_id,
        generation=state.generation,
    )


def _close_existing(state: PeerState) -> tuple[Command, ...]:
    """Commands that retire the current connection before a new round."""
    if not state.has_connection:
        return ()
    return (
        CancelTimer(timer_id=negotiation_timer_id(state.participant_id)),
        ClosePeer(participant_id=state.participant_id, generation=state.generation),
        StopPlayback(participant_id=state.participant_id),
    )


def _teardown(state: PeerState, event: Event, reason: str) -> Result:
    """
    Close, stop playback, clear buffered candidates, release.

    Idempotent: tearing down a peer without a connection only clears the
    candidate buffer.
    """
    if not state.has_connection:
        new_state = replace(state, pending_candidates=())
        return new_state, (_log(new_state, event, "ignore", {"reason": "no_connection", "teardown": reason}),)

    new_state = replace(
        state,
        negotiation=NegotiationState.CLOSED,
        ice=IceState.CLOSED,
        has_connection=False,
        remote_description_set=False,
        pending_candidates=(),
        has_inbound_audio=False,
        last_error=reason,
    )

    commands: tuple[Command, ...] = (
        CancelTimer(timer_id=negotiation_timer_id(state.participant_id)),
        ClosePeer(participant_id=state.participant_id, generation=state.generation),
        StopPlayback(participant_id=state.participant_id),
        ReleasePeer(
            participant_id=state.participant_id,
            generation=state.generation,
            reason=reason,
        ),
        *_state_changed(state, new_state, event, "teardown"),
        _log(new_state, event, "teardown", {"reason": reason}),
    )
    return new_state, _logs_last(commands)


def _mark_connected(state: PeerState, event: Event) -> Result:
    """CONNECTING + ICE connected -> STABLE."""
    new_state = replace(state, negotiation=NegotiationState.STABLE)
    details: dict[str, Any] = {}
    if state.round_started_ts_ms is not None:
        details["negotiation_ms"] = event.ts_ms - state.round_started_ts_ms
    return new_state, _logs_last((
        CancelTimer(timer_id=negotiation_timer_id(state.participant_id)),
        *_state_changed(state, new_state, event, "ice_connected"),
        _log(new_state, event, "peer_connected", details),
    ))


# =============================================================================
# Round starts
# =============================================================================

def _on_offer_received(state: PeerState, event: OfferReceived, timeout_ms: int) -> Result:
    if state.role is not Role.HOST:
        return _ignore(state, event, "offer_on_listener")

    if event.message_id == state.negotiation_id and state.has_connection:
        return _ignore(state, event, "offer_already_applied")

    retire = _close_existing(state)

    new_state = replace(
        state,
        generation=state.generation + 1,
        has_connection=True,
        negotiation=NegotiationState.HAVE_REMOTE_OFFER,
        ice=IceState.NEW,
        negotiation_id=event.message_id,
        send_audio=True,
        remote_description_set=False,
        round_started_ts_ms=event.ts_ms,
        pending_candidates=tuple(
            c for c in state.pending_candidates if _matches_round(c, event.message_id)
        ),
        has_inbound_audio=False,
        last_error=None,
    )

    return new_state, _logs_last((
        *retire,
        CreatePeer(
            participant_id=new_state.participant_id,
            generation=new_state.generation,
            send_audio=True,
        ),
        ApplyRemoteDescription(
            participant_id=new_state.participant_id,
            generation=new_state.generation,
            kind="offer",
            sdp=event.sdp,
        ),
        _start_timer(new_state, timeout_ms),
        *_state_changed(state, new_state, event, "offer_received"),
        _log(new_state, event, "offer_accepted", {
            "replaced_generation": state.generation if retire else None,
            "buffered_candidates": len(new_state.pending_candidates),
        }),
    ))


def _on_start_negotiation(state: PeerState, event: StartNegotiation, timeout_ms: int) -> Result:
    if state.role is not Role.LISTENER:
        return _ignore(state, event, "start_negotiation_on_host")

    retire = _close_existing(state)

    new_state = replace(
        state,
        generation=state.generation + 1,
        has_connection=True,
        negotiation=NegotiationState.OFFER_CREATED,
        ice=IceState.NEW,
        negotiation_id=event.offer_id,
        send_audio=event.send_audio,
        remote_description_set=False,
        round_started_ts_ms=event.ts_ms,
        pending_candidates=(),
        has_inbound_audio=False,
        last_error=None,
    )

    return new_state, _logs_last((
        *retire,
        CreatePeer(
            participant_id=new_state.participant_id,
            generation=new_state.generation,
            send_audio=event.send_audio,
        ),
        CreateOffer(
            participant_id=new_state.participant_id,
            generation=new_state.generation,
        ),
        _start_timer(new_state, timeout_ms),
        *_state_changed(state, new_state, event, "start_negotiation"),
        _log(new_state, event, "offer_started", {"send_audio": event.send_audio}),
    ))


# =============================================================================
# Descriptions
# =============================================================================

def _on_answer_received(state: PeerState, event: AnswerReceived) -> Result:
    if state.role is not Role.LISTENER:
        return _ignore(state, event, "answer_on_host")

    if event.in_reply_to != state.negotiation_id:
        return _ignore(state, event, "answer_for_other_round")

    if state.negotiation is not NegotiationState.ANSWER_AWAITED:
        return _ignore(state, event, "not_awaiting_answer")

    new_state = replace(state, negotiation=NegotiationState.CONNECTING)
    return new_state, _logs_last((
        ApplyRemoteDescription(
            participant_id=state.participant_id,
            generation=state.generation,
            kind="answer",
            sdp=event.sdp,
        ),
        *_state_changed(state, new_state, event, "answer_received"),
    ))


def _on_remote_description_applied(state: PeerState, event: RemoteDescriptionApplied) -> Result:
    if state.remote_description_set:
        return _ignore(state, event, "remote_description_already_set")

    flushed = tuple(
        c for c in state.pending_candidates if _matches_round(c, state.negotiation_id)
    )
    remaining = tuple(
        c for c in state.pending_candidates if not _matches_round(c, state.negotiation_id)
    )

    new_state = replace(
        state,
        remote_description_set=True,
        pending_candidates=remaining,
    )

    commands: list[Command] = [
        AddIceCandidate(
            participant_id=state.participant_id,
            generation=state.generation,
            candidate=candidate,
        )
        for candidate in flushed
    ]

    if state.role is Role.HOST:
        commands.append(
            CreateAnswer(participant_id=state.participant_id, generation=state.generation)
        )

    commands.append(_log(new_state, event, "remote_description_set", {
        "flushed_candidates": len(flushed),
    }))
    return new_state, _logs_last(tuple(commands))


def _on_local_description_ready(state: PeerState, event: LocalDescriptionReady) -> Result:
    if state.negotiation_id is None:
        return _ignore(state, event, "no_active_round")

    if state.role is Role.HOST:
        if event.kind != "answer" or state.negotiation is not NegotiationState.HAVE_REMOTE_OFFER:
            return _ignore(state, event, "unexpected_local_description")

        answer = Answer(
            message_id=answer_id_for(state.negotiation_id),
            in_reply_to=state.negotiation_id,
            sdp=event.sdp,
            ts_ms=event.ts_ms,
        )
        new_state = replace(state, negotiation=NegotiationState.CONNECTING)
        commands: tuple[Command, ...] = (
            WriteSignal(path=paths.answer(state.participant_id), payload=encode_signal(answer)),
            *_state_changed(state, new_state, event, "answer_written"),
        )
        if new_state.ice is IceState.CONNECTED:
            stable_state, stable_commands = _mark_connected(new_state, event)
            return stable_state, _logs_last(commands + stable_commands)
        return new_state, _logs_last(commands)

    if event.kind != "offer" or state.negotiation is not NegotiationState.OFFER_CREATED:
        return _ignore(state, event, "unexpected_local_description")

    offer = Offer(
        message_id=state.negotiation_id,
        sender_id=state.local_id,
        sdp=event.sdp,
        ts_ms=event.ts_ms,
    )
    new_state = replace(state, negotiation=NegotiationState.ANSWER_AWAITED)
    return new_state, _logs_last((
        WriteSignal(path=paths.offer(state.local_id), payload=encode_signal(offer)),
        *_state_changed(state, new_state, event, "offer_written"),
    ))


# =============================================================================
# ICE candidates
# =============================================================================

def _on_remote_candidate(state: PeerState, event: RemoteCandidateReceived) -> Result:
    candidate = event.candidate

    if (
        state.has_connection
        and state.remote_description_set
        and _matches_round(candidate, state.negotiation_id)
    ):
        return state, _logs_last((
            AddIceCandidate(
                participant_id=state.participant_id,
                generation=state.generation,
                candidate=candidate,
            ),
            _log(state, event, "candidate_applied"),
        ))

    new_state = replace(state, pending_candidates=state.pending_candidates + (candidate,))
    reason = (
        "no_remote_description"
        if _matches_round(candidate, state.negotiation_id)
        else "other_round"
    )
    return new_state, (_log(new_state, event, "candidate_buffered", {
        "reason": reason,
        "buffered": len(new_state.pending_candidates),
    }),)


def _on_local_candidate(state: PeerState, event: LocalCandidateGathered) -> Result:
    if not state.has_connection or state.negotiation_id is None:
        return _ignore(state, event, "no_active_round")

    candidate = IceCandidate(
        candidate=event.candidate,
        sdp_mid=event.sdp_mid,
        sdp_mline_index=event.sdp_mline_index,
        negotiation_id=state.negotiation_id,
        ts_ms=event.ts_ms,
    )
    peer_id = _signal_peer_id(state)
    path = (
        paths.host_candidates(peer_id)
        if state.role is Role.HOST
        else paths.listener_candidates(peer_id)
    )
    return state, (PushSignal(path=path, payload=encode_signal(candidate)),)


# =============================================================================
# Connectivity / media
# =============================================================================

def _on_ice_state_changed(state: PeerState, event: IceStateChanged) -> Result:
    if not state.has_connection:
        return _ignore(state, event, "no_connection")

    if event.ice_state in (IceState.FAILED, IceState.CLOSED):
        return _teardown(replace(state, ice=event.ice_state), event, f"ice_{event.ice_state.value}")

    new_state = replace(state, ice=event.ice_state)

    if event.ice_state is IceState.CONNECTED:
        if state.negotiation is NegotiationState.CONNECTING:
            return _mark_connected(new_state, event)
        if state.ice is IceState.DISCONNECTED:
            return new_state, (_log(new_state, event, "ice_recovered"),)

    return new_state, (_log(new_state, event, "ice_state", {
        "from_ice": state.ice.value,
        "to_ice": new_state.ice.value,
    }),)


def _on_remote_track(state: PeerState, event: RemoteTrackReceived) -> Result:
    if not state.has_connection:
        return _ignore(state, event, "no_connection")

    new_state = replace(state, has_inbound_audio=True)
    return new_state, _logs_last((
        StartPlayback(participant_id=state.participant_id, track=event.track),
        _log(new_state, event, "playback_started"),
    ))


def _on_negotiation_failed(state: PeerState, event: NegotiationFailed) -> Result:
    new_state, commands = _teardown(state, event, f"{event.stage}: {event.reason}")
    if state.role is Role.HOST and state.negotiation_id is not None:
        commands = (ForgetMessage(message_id=state.negotiation_id),) + commands
    return new_state, _logs_last(commands)


def _on_negotiation_timeout(state: PeerState, event: NegotiationTimeout) -> Result:
    if not state.has_connection:
        return _ignore(state, event, "no_connection")
    if state.negotiation is NegotiationState.STABLE:
        return _ignore(state, event, "already_stable")
    return _teardown(state, event, "negotiation_timeout")


# =============================================================================
# Entry point
# =============================================================================

def reduce(
    state: PeerState,
    event: Event,
    *,
    negotiation_timeout_ms: int = NEGOTIATION_TIMEOUT_MS,
) -> Result:
    """Apply one event to one peer's negotiation state."""

    if isinstance(event, AdapterEvent) and event.generation != state.generation:
        return _ignore(state, event, "stale_generation")

    if isinstance(event, OfferReceived):
        return _on_offer_received(state, event, negotiation_timeout_ms)

    if isinstance(event, StartNegotiation):
        return _on_start_negotiation(state, event, negotiation_timeout_ms)

    if isinstance(event, AnswerReceived):
        return _on_answer_received(state, event)

    if isinstance(event, RemoteCandidateReceived):
        return _on_remote_candidate(state, event)

    if isinstance(event, TeardownRequested):
        return _teardown(state, event, event.reason)

    if isinstance(event, RemoteDescriptionApplied):
        return _on_remote_description_applied(state, event)

    if isinstance(event, LocalDescriptionReady):
        return _on_local_description_ready(state, event)

    if isinstance(event, LocalCandidateGathered):
        return _on_local_candidate(state, event)

    if isinstance(event, IceStateChanged):
        return _on_ice_state_changed(state, event)

    if isinstance(event, RemoteTrackReceived):
        return _on_remote_track(state, event)

    if isinstance(event, NegotiationFailed):
        return _on_negotiation_failed(state, event)

    if isinstance(event, NegotiationTimeout):
        return _on_negotiation_timeout(state, event)

    return _ignore(state, event, "unhandled_event")
