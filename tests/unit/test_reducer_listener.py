# pylint: disable=missing-module-docstring,missing-function-docstring
from negotiation.commands import (
    AddIceCandidate,
    ApplyRemoteDescription,
    Command,
    CreateOffer,
    CreatePeer,
    ForgetMessage,
    LogEvent,
    PushSignal,
    StartTimer,
    WriteSignal,
)
from negotiation.enums.state import IceState, NegotiationState
from negotiation.events import (
    AnswerReceived,
    EventType,
    IceStateChanged,
    LocalCandidateGathered,
    LocalDescriptionReady,
    NegotiationFailed,
    OfferReceived,
    RemoteCandidateReceived,
    RemoteDescriptionApplied,
    StartNegotiation,
)
from negotiation.reducer import reduce
from negotiation.state_dataclass import PeerState
from protocol.presence import Role
from protocol.signals import IceCandidate


HOST = "host-1"
ME = "listener-a"


def listener_state() -> PeerState:
    return PeerState(participant_id=HOST, local_id=ME, role=Role.LISTENER)


def start(offer_id: str = "offer-1", send_audio: bool = False, ts_ms: int = 0) -> StartNegotiation:
    return StartNegotiation(
        event_type=EventType.START_NEGOTIATION,
        ts_ms=ts_ms,
        participant_id=HOST,
        offer_id=offer_id,
        send_audio=send_audio,
    )


def local_offer(generation: int) -> LocalDescriptionReady:
    return LocalDescriptionReady(
        event_type=EventType.LOCAL_DESCRIPTION_READY,
        ts_ms=50,
        participant_id=HOST,
        generation=generation,
        kind="offer",
        sdp="offer-sdp",
    )


def answer(in_reply_to: str = "offer-1") -> AnswerReceived:
    return AnswerReceived(
        event_type=EventType.ANSWER_RECEIVED,
        ts_ms=60,
        participant_id=HOST,
        message_id=f"{in_reply_to}:answer",
        in_reply_to=in_reply_to,
        sdp="answer-sdp",
    )


def applied(generation: int) -> RemoteDescriptionApplied:
    return RemoteDescriptionApplied(
        event_type=EventType.REMOTE_DESCRIPTION_APPLIED,
        ts_ms=70,
        participant_id=HOST,
        generation=generation,
    )


def non_logs(commands: tuple[Command, ...]) -> list[Command]:
    return [c for c in commands if not isinstance(c, LogEvent)]


def awaiting_answer() -> PeerState:
    state, _ = reduce(listener_state(), start())
    state, _ = reduce(state, local_offer(1))
    return state


def test_start_creates_receive_only_connection_and_offer() -> None:
    state, commands = reduce(listener_state(), start())

    assert state.negotiation is NegotiationState.OFFER_CREATED
    assert [type(c) for c in non_logs(commands)] == [CreatePeer, CreateOffer, StartTimer]
    assert non_logs(commands)[0] == CreatePeer(participant_id=HOST, generation=1, send_audio=False)


def test_offer_is_written_under_own_webrtc_subtree() -> None:
    state, _ = reduce(listener_state(), start())
    state, commands = reduce(state, local_offer(1))

    assert state.negotiation is NegotiationState.ANSWER_AWAITED
    (write,) = non_logs(commands)
    assert isinstance(write, WriteSignal)
    assert write.path == f"webrtc/{ME}/offer"
    assert write.payload == {
        "type": "offer",
        "id": "offer-1",
        "from": ME,
        "sdp": "offer-sdp",
        "timestamp": 50,
    }


def test_matching_answer_is_applied() -> None:
    state, commands = reduce(awaiting_answer(), answer())

    assert state.negotiation is NegotiationState.CONNECTING
    assert non_logs(commands) == [
        ApplyRemoteDescription(participant_id=HOST, generation=1, kind="answer", sdp="answer-sdp"),
    ]


def test_answer_for_another_round_is_ignored() -> None:
    state = awaiting_answer()
    after, commands = reduce(state, answer(in_reply_to="offer-0"))

    assert after == state
    assert commands[0].event["details"]["reason"] == "answer_for_other_round"


def test_answer_applied_once() -> None:
    state, _ = reduce(awaiting_answer(), answer())
    after, commands = reduce(state, answer())

    assert after == state
    assert non_logs(commands) == []


def test_host_candidates_wait_for_answer() -> None:
    state = awaiting_answer()
    for name in ("h1", "h2"):
        state, _ = reduce(state, RemoteCandidateReceived(
            event_type=EventType.REMOTE_CANDIDATE_RECEIVED,
            ts_ms=0,
            participant_id=HOST,
            candidate=IceCandidate(name, "0", 0, negotiation_id="offer-1"),
        ))

    state, _ = reduce(state, answer())
    state, commands = reduce(state, applied(1))

    flushed = [c.candidate.candidate for c in non_logs(commands) if isinstance(c, AddIceCandidate)]
    assert flushed == ["h1", "h2"]
    # listeners never create answers
    assert len(non_logs(commands)) == 2


def test_local_candidates_go_to_listener_list() -> None:
    state = awaiting_answer()
    _, commands = reduce(state, LocalCandidateGathered(
        event_type=EventType.LOCAL_CANDIDATE_GATHERED,
        ts_ms=5,
        participant_id=HOST,
        generation=1,
        candidate="candidate:1 1 udp 1 10.0.0.1 5000 typ host",
        sdp_mid="0",
        sdp_mline_index=0,
    ))

    (push,) = commands
    assert isinstance(push, PushSignal)
    assert push.path == f"webrtc/{ME}/listenerIceCandidates"
    assert push.payload["negotiationId"] == "offer-1"


def test_renegotiation_with_audio_replaces_connection() -> None:
    state, _ = reduce(awaiting_answer(), answer())
    state, _ = reduce(state, IceStateChanged(
        event_type=EventType.ICE_STATE_CHANGED, ts_ms=90,
        participant_id=HOST, generation=1, ice_state=IceState.CONNECTED,
    ))
    assert state.negotiation is NegotiationState.STABLE

    state, commands = reduce(state, start("offer-2", send_audio=True))

    assert state.generation == 2
    assert state.send_audio is True
    assert CreatePeer(participant_id=HOST, generation=2, send_audio=True) in commands


def test_offers_are_ignored_on_listener() -> None:
    state = listener_state()
    after, commands = reduce(state, OfferReceived(
        event_type=EventType.OFFER_RECEIVED, ts_ms=0,
        participant_id=HOST, message_id="offer-x", sdp="sdp",
    ))

    assert after == state
    assert commands[0].event["details"]["reason"] == "offer_on_listener"


def test_listener_failure_does_not_forget_messages() -> None:
    _, commands = reduce(awaiting_answer(), NegotiationFailed(
        event_type=EventType.NEGOTIATION_FAILED, ts_ms=0,
        participant_id=HOST, generation=1, stage="create_offer", reason="boom",
    ))

    assert not any(isinstance(c, ForgetMessage) for c in commands)
