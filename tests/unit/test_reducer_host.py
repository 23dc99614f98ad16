# pylint: disable=missing-module-docstring,missing-function-docstring
from dataclasses import replace

from negotiation.commands import (
    AddIceCandidate,
    ApplyRemoteDescription,
    CancelTimer,
    ClosePeer,
    Command,
    CreateAnswer,
    CreatePeer,
    ForgetMessage,
    LogEvent,
    ReleasePeer,
    StartPlayback,
    StartTimer,
    StopPlayback,
    WriteSignal,
)
from negotiation.enums.state import IceState, NegotiationState
from negotiation.events import (
    EventType,
    IceStateChanged,
    LocalDescriptionReady,
    NegotiationFailed,
    NegotiationTimeout,
    OfferReceived,
    RemoteCandidateReceived,
    RemoteDescriptionApplied,
    RemoteTrackReceived,
    TeardownRequested,
)
from negotiation.reducer import negotiation_timer_id, reduce
from negotiation.state_dataclass import PeerState
from protocol.presence import Role
from protocol.signals import IceCandidate


# ---------------------------------------------------------------------
# Event helpers (mirror runtime construction)
# ---------------------------------------------------------------------

PID = "listener-a"


def host_state() -> PeerState:
    return PeerState(participant_id=PID, local_id="host-1", role=Role.HOST)


def offer(message_id: str = "offer-1", ts_ms: int = 100) -> OfferReceived:
    return OfferReceived(
        event_type=EventType.OFFER_RECEIVED,
        ts_ms=ts_ms,
        participant_id=PID,
        message_id=message_id,
        sdp=f"sdp:{message_id}",
    )


def applied(generation: int) -> RemoteDescriptionApplied:
    return RemoteDescriptionApplied(
        event_type=EventType.REMOTE_DESCRIPTION_APPLIED,
        ts_ms=0,
        participant_id=PID,
        generation=generation,
    )


def local_answer(generation: int, ts_ms: int = 0) -> LocalDescriptionReady:
    return LocalDescriptionReady(
        event_type=EventType.LOCAL_DESCRIPTION_READY,
        ts_ms=ts_ms,
        participant_id=PID,
        generation=generation,
        kind="answer",
        sdp="answer-sdp",
    )


def ice(generation: int, ice_state: IceState, ts_ms: int = 0) -> IceStateChanged:
    return IceStateChanged(
        event_type=EventType.ICE_STATE_CHANGED,
        ts_ms=ts_ms,
        participant_id=PID,
        generation=generation,
        ice_state=ice_state,
    )


def remote_candidate(name: str, negotiation_id: str | None = "offer-1") -> RemoteCandidateReceived:
    return RemoteCandidateReceived(
        event_type=EventType.REMOTE_CANDIDATE_RECEIVED,
        ts_ms=0,
        participant_id=PID,
        candidate=IceCandidate(
            candidate=name, sdp_mid="0", sdp_mline_index=0, negotiation_id=negotiation_id
        ),
    )


def non_logs(commands: tuple[Command, ...]) -> list[Command]:
    return [c for c in commands if not isinstance(c, LogEvent)]


def decisions(commands: tuple[Command, ...]) -> list[str]:
    return [c.event["decision"] for c in commands if isinstance(c, LogEvent)]


def connected_state() -> PeerState:
    state, _ = reduce(host_state(), offer())
    state, _ = reduce(state, applied(1))
    state, _ = reduce(state, local_answer(1))
    state, _ = reduce(state, ice(1, IceState.CONNECTED, ts_ms=400))
    return state


# ---------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------

def test_offer_creates_sending_connection_and_starts_timer() -> None:
    state, commands = reduce(host_state(), offer(), negotiation_timeout_ms=5000)

    assert state.generation == 1
    assert state.negotiation is NegotiationState.HAVE_REMOTE_OFFER
    assert state.negotiation_id == "offer-1"
    assert non_logs(commands) == [
        CreatePeer(participant_id=PID, generation=1, send_audio=True),
        ApplyRemoteDescription(participant_id=PID, generation=1, kind="offer", sdp="sdp:offer-1"),
        StartTimer(
            timer_id=negotiation_timer_id(PID),
            duration_ms=5000,
            timeout_event_type=EventType.NEGOTIATION_TIMEOUT,
            participant_id=PID,
            generation=1,
        ),
    ]
    # logs always come last
    assert isinstance(commands[-1], LogEvent)


def test_answer_is_written_only_after_remote_description_applied() -> None:
    state, _ = reduce(host_state(), offer())
    state, commands = reduce(state, applied(1))

    assert non_logs(commands) == [CreateAnswer(participant_id=PID, generation=1)]

    state, commands = reduce(state, local_answer(1, ts_ms=200))

    assert state.negotiation is NegotiationState.CONNECTING
    (write,) = non_logs(commands)
    assert isinstance(write, WriteSignal)
    assert write.path == f"webrtc/{PID}/answer"
    assert write.payload["inReplyTo"] == "offer-1"
    assert write.payload["id"] == "offer-1:answer"
    assert write.payload["sdp"] == "answer-sdp"


def test_ice_connected_makes_round_stable_and_reports_duration() -> None:
    state = connected_state()

    assert state.negotiation is NegotiationState.STABLE
    assert state.ice is IceState.CONNECTED


def test_peer_connected_log_carries_negotiation_time() -> None:
    state, _ = reduce(host_state(), offer(ts_ms=100))
    state, _ = reduce(state, applied(1))
    state, _ = reduce(state, local_answer(1))
    _, commands = reduce(state, ice(1, IceState.CONNECTED, ts_ms=400))

    (connected,) = [c for c in commands if isinstance(c, LogEvent) and c.event["decision"] == "peer_connected"]
    assert connected.event["details"]["negotiation_ms"] == 300
    assert CancelTimer(timer_id=negotiation_timer_id(PID)) in commands


def test_candidates_before_remote_description_flush_in_order() -> None:
    state, _ = reduce(host_state(), offer())
    for name in ("c1", "c2", "c3"):
        state, commands = reduce(state, remote_candidate(name))
        assert non_logs(commands) == []

    state, commands = reduce(state, applied(1))

    applied_order = [c.candidate.candidate for c in commands if isinstance(c, AddIceCandidate)]
    assert applied_order == ["c1", "c2", "c3"]
    assert state.pending_candidates == ()


def test_candidates_arriving_before_the_offer_survive_into_the_round() -> None:
    state, _ = reduce(host_state(), remote_candidate("early"))
    state, _ = reduce(state, remote_candidate("stale", negotiation_id="offer-0"))
    state, _ = reduce(state, offer())

    assert [c.candidate for c in state.pending_candidates] == ["early"]


def test_candidate_after_remote_description_is_applied_immediately() -> None:
    state, _ = reduce(host_state(), offer())
    state, _ = reduce(state, applied(1))
    _, commands = reduce(state, remote_candidate("late"))

    assert [type(c) for c in non_logs(commands)] == [AddIceCandidate]


def test_new_offer_replaces_the_connection() -> None:
    state = connected_state()
    state, commands = reduce(state, offer("offer-2"))

    assert state.generation == 2
    assert state.negotiation_id == "offer-2"
    assert non_logs(commands)[:3] == [
        CancelTimer(timer_id=negotiation_timer_id(PID)),
        ClosePeer(participant_id=PID, generation=1),
        StopPlayback(participant_id=PID),
    ]
    assert CreatePeer(participant_id=PID, generation=2, send_audio=True) in commands


def test_same_offer_twice_is_ignored() -> None:
    state, _ = reduce(host_state(), offer())
    again, commands = reduce(state, offer())

    assert again == state
    assert decisions(commands) == ["ignore"]


def test_stale_generation_events_are_ignored() -> None:
    state = connected_state()
    state, _ = reduce(state, offer("offer-2"))
    after, commands = reduce(state, ice(1, IceState.FAILED))

    assert after == state
    assert commands[0].event["details"]["reason"] == "stale_generation"


def test_ice_failure_tears_down_with_release() -> None:
    state = connected_state()
    state, commands = reduce(state, ice(1, IceState.FAILED))

    assert state.has_connection is False
    assert state.negotiation is NegotiationState.CLOSED
    assert non_logs(commands) == [
        CancelTimer(timer_id=negotiation_timer_id(PID)),
        ClosePeer(participant_id=PID, generation=1),
        StopPlayback(participant_id=PID),
        ReleasePeer(participant_id=PID, generation=1, reason="ice_failed"),
    ]


def test_disconnected_is_not_a_teardown() -> None:
    state = connected_state()
    state, commands = reduce(state, ice(1, IceState.DISCONNECTED))

    assert state.has_connection is True
    assert non_logs(commands) == []

    state, commands = reduce(state, ice(1, IceState.CONNECTED))
    assert decisions(commands) == ["ice_recovered"]


def test_remote_track_starts_playback() -> None:
    state = connected_state()
    state, commands = reduce(state, RemoteTrackReceived(
        event_type=EventType.REMOTE_TRACK_RECEIVED, ts_ms=0,
        participant_id=PID, generation=1, track="track",
    ))

    assert state.has_inbound_audio is True
    assert non_logs(commands) == [StartPlayback(participant_id=PID, track="track")]


def test_failure_forgets_the_offer_so_a_resend_is_accepted() -> None:
    state, _ = reduce(host_state(), offer())
    state, commands = reduce(state, NegotiationFailed(
        event_type=EventType.NEGOTIATION_FAILED, ts_ms=0,
        participant_id=PID, generation=1, stage="set_remote_description", reason="bad sdp",
    ))

    assert commands[0] == ForgetMessage(message_id="offer-1")
    assert state.last_error == "set_remote_description: bad sdp"
    assert state.has_connection is False


def test_timeout_tears_down_unless_stable() -> None:
    timeout = NegotiationTimeout(
        event_type=EventType.NEGOTIATION_TIMEOUT, ts_ms=0, participant_id=PID, generation=1,
    )

    pending, _ = reduce(host_state(), offer())
    torn, _ = reduce(pending, timeout)
    assert torn.last_error == "negotiation_timeout"

    stable = connected_state()
    unchanged, commands = reduce(stable, timeout)
    assert unchanged == stable
    assert decisions(commands) == ["ignore"]


def test_teardown_without_connection_only_clears_buffer() -> None:
    state = replace(host_state(), pending_candidates=(IceCandidate("c", "0", 0),))
    state, commands = reduce(state, TeardownRequested(
        event_type=EventType.TEARDOWN_REQUESTED, ts_ms=0, participant_id=PID, reason="participant_left",
    ))

    assert state.pending_candidates == ()
    assert non_logs(commands) == []


def test_teardown_is_idempotent() -> None:
    request = TeardownRequested(
        event_type=EventType.TEARDOWN_REQUESTED, ts_ms=0, participant_id=PID, reason="participant_left",
    )
    once, first = reduce(connected_state(), request)
    twice, second = reduce(once, request)

    assert [type(c) for c in non_logs(first)] == [CancelTimer, ClosePeer, StopPlayback, ReleasePeer]
    assert twice == once
    assert non_logs(second) == []
