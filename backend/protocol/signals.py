"""
Signaling message codec.

Wire shape (one JSON-compatible mapping per channel entry):

    offer          {"type": "offer", "id", "from", "sdp", "timestamp"}
    answer         {"type": "answer", "id", "inReplyTo", "sdp", "timestamp"}
    ice-candidate  {"type": "ice-candidate", "candidate", "sdpMid",
                    "sdpMLineIndex", "negotiationId", "timestamp"}
    speak-request  {"type": "speak-request", "participantId",
                    "participantName", "timestamp"}

Rules:
- Every message is a frozen tagged variant.
- decode_signal() is strict and raises SignalDecodeError.
- try_decode_signal() fails closed: logs and returns None.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Union

from observability.logger import log_event


class SignalDecodeError(ValueError):
    """Raised when a channel entry is not a well-formed signaling message."""


class SignalType(str, Enum):
    """Discriminant carried in the "type" field of every message."""

    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    SPEAK_REQUEST = "speak-request"


# =============================================================================
# Variants
# =============================================================================

@dataclass(frozen=True)
class Offer:
    message_id: str
    sender_id: str
    sdp: str
    ts_ms: int
    signal_type: SignalType = SignalType.OFFER


@dataclass(frozen=True)
class Answer:
    message_id: str
    in_reply_to: str
    sdp: str
    ts_ms: int
    signal_type: SignalType = SignalType.ANSWER


@dataclass(frozen=True)
class IceCandidate:
    """
    One trickled ICE candidate.

    negotiation_id is the offer id of the round that produced the candidate;
    None for peers that do not tag their candidates.
    """
    candidate: str
    sdp_mid: str | None
    sdp_mline_index: int | None
    negotiation_id: str | None = None
    ts_ms: int = 0
    signal_type: SignalType = SignalType.ICE_CANDIDATE


@dataclass(frozen=True)
class SpeakRequest:
    """request_id is the channel push key, not part of the payload."""
    request_id: str
    participant_id: str
    participant_name: str
    ts_ms: int
    signal_type: SignalType = SignalType.SPEAK_REQUEST


Signal = Union[Offer, Answer, IceCandidate, SpeakRequest]


# =============================================================================
# Encoding
# =============================================================================

def encode_signal(signal: Signal) -> dict[str, Any]:
    """Encode a message into its wire mapping."""
    if isinstance(signal, Offer):
        return {
            "type": signal.signal_type.value,
            "id": signal.message_id,
            "from": signal.sender_id,
            "sdp": signal.sdp,
            "timestamp": signal.ts_ms,
        }
    if isinstance(signal, Answer):
        return {
            "type": signal.signal_type.value,
            "id": signal.message_id,
            "inReplyTo": signal.in_reply_to,
            "sdp": signal.sdp,
            "timestamp": signal.ts_ms,
        }
    if isinstance(signal, IceCandidate):
        return {
            "type": signal.signal_type.value,
            "candidate": signal.candidate,
            "sdpMid": signal.sdp_mid,
            "sdpMLineIndex": signal.sdp_mline_index,
            "negotiationId": signal.negotiation_id,
            "timestamp": signal.ts_ms,
        }
    return {
        "type": signal.signal_type.value,
        "participantId": signal.participant_id,
        "participantName": signal.participant_name,
        "timestamp": signal.ts_ms,
    }


# =============================================================================
# Decoding
# =============================================================================

def _require_str(raw: Mapping[str, Any], key: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value:
        raise SignalDecodeError(f"missing or invalid field: {key}")
    return value


def _optional_str(raw: Mapping[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise SignalDecodeError(f"invalid field: {key}")
    return value


def _timestamp(raw: Mapping[str, Any]) -> int:
    value = raw.get("timestamp", 0)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SignalDecodeError("invalid field: timestamp")
    return int(value)


def decode_signal(
    raw: Any,
    *,
    key: str | None = None,
    expected: SignalType | None = None,
) -> Signal:
    """
    Decode a wire mapping into a message variant.

    Args:
        raw: value read from the channel
        key: channel key of the entry (used as the speak request id)
        expected: reject any other variant

    Raises:
        SignalDecodeError on any malformed input.
    """
    if not isinstance(raw, Mapping):
        raise SignalDecodeError("message is not a mapping")

    try:
        signal_type = SignalType(raw.get("type"))
    except ValueError as exc:
        raise SignalDecodeError(f"unknown message type: {raw.get('type')!r}") from exc

    if expected is not None and signal_type is not expected:
        raise SignalDecodeError(
            f"expected {expected.value}, got {signal_type.value}"
        )

    if signal_type is SignalType.OFFER:
        return Offer(
            message_id=_require_str(raw, "id"),
            sender_id=_require_str(raw, "from"),
            sdp=_require_str(raw, "sdp"),
            ts_ms=_timestamp(raw),
        )

    if signal_type is SignalType.ANSWER:
        return Answer(
            message_id=_require_str(raw, "id"),
            in_reply_to=_require_str(raw, "inReplyTo"),
            sdp=_require_str(raw, "sdp"),
            ts_ms=_timestamp(raw),
        )

    if signal_type is SignalType.ICE_CANDIDATE:
        mline = raw.get("sdpMLineIndex")
        if mline is not None and (isinstance(mline, bool) or not isinstance(mline, int)):
            raise SignalDecodeError("invalid field: sdpMLineIndex")
        return IceCandidate(
            candidate=_require_str(raw, "candidate"),
            sdp_mid=_optional_str(raw, "sdpMid"),
            sdp_mline_index=mline,
            negotiation_id=_optional_str(raw, "negotiationId"),
            ts_ms=_timestamp(raw),
        )

    if not key:
        raise SignalDecodeError("speak request requires its channel key")
    return SpeakRequest(
        request_id=key,
        participant_id=_require_str(raw, "participantId"),
        participant_name=_optional_str(raw, "participantName") or "",
        ts_ms=_timestamp(raw),
    )


def try_decode_signal(
    raw: Any,
    *,
    key: str | None = None,
    expected: SignalType | None = None,
    room_id: str | None = None,
    path: str | None = None,
) -> Signal | None:
    """Fail-closed decode: malformed entries are logged and ignored."""
    try:
        return decode_signal(raw, key=key, expected=expected)
    except SignalDecodeError as exc:
        log_event({
            "event_type": "SIGNAL_DECODE_FAILED",
            "room_id": room_id,
            "path": path,
            "key": key,
            "error": str(exc),
        })
        return None
