"""
Event definitions for the per-peer negotiation reducer and session managers.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- No clocks, no timers, no async, no side effects.

Adapter and timer events carry the connection generation they were produced
for; the reducer ignores events whose generation is not the current one.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from negotiation.enums.state import IceState
from protocol.presence import Participant
from protocol.signals import IceCandidate, SpeakRequest


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types.

    Every (negotiation state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Negotiation rounds (signaling-derived)
    # ------------------------------------------------------------------
    START_NEGOTIATION = "START_NEGOTIATION"
    OFFER_RECEIVED = "OFFER_RECEIVED"
    ANSWER_RECEIVED = "ANSWER_RECEIVED"
    REMOTE_CANDIDATE_RECEIVED = "REMOTE_CANDIDATE_RECEIVED"
    TEARDOWN_REQUESTED = "TEARDOWN_REQUESTED"

    # ------------------------------------------------------------------
    # Peer connection adapter
    # ------------------------------------------------------------------
    REMOTE_DESCRIPTION_APPLIED = "REMOTE_DESCRIPTION_APPLIED"
    LOCAL_DESCRIPTION_READY = "LOCAL_DESCRIPTION_READY"
    LOCAL_CANDIDATE_GATHERED = "LOCAL_CANDIDATE_GATHERED"
    ICE_STATE_CHANGED = "ICE_STATE_CHANGED"
    REMOTE_TRACK_RECEIVED = "REMOTE_TRACK_RECEIVED"
    NEGOTIATION_FAILED = "NEGOTIATION_FAILED"

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    NEGOTIATION_TIMEOUT = "NEGOTIATION_TIMEOUT"

    # ------------------------------------------------------------------
    # Room / presence (handled by the session managers)
    # ------------------------------------------------------------------
    PARTICIPANT_JOINED = "PARTICIPANT_JOINED"
    PARTICIPANT_LEFT = "PARTICIPANT_LEFT"
    PARTICIPANT_UPDATED = "PARTICIPANT_UPDATED"
    SPEAK_REQUESTS_CHANGED = "SPEAK_REQUESTS_CHANGED"
    ROOM_STATUS_CHANGED = "ROOM_STATUS_CHANGED"


# =============================================================================
# Base Events
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


@dataclass(frozen=True)
class PeerEvent(Event):
    """Event scoped to the connection with one counterpart participant."""

    participant_id: str


@dataclass(frozen=True)
class AdapterEvent(PeerEvent):
    """
    Event produced by a specific peer connection instance.

    The reducer MUST ignore events whose generation does not match the
    current connection generation for that participant.
    """

    generation: int


# =============================================================================
# Negotiation Round Events
# =============================================================================

@dataclass(frozen=True)
class StartNegotiation(PeerEvent):
    """Listener begins a round with a freshly minted offer id."""
    offer_id: str
    send_audio: bool = False


@dataclass(frozen=True)
class OfferReceived(PeerEvent):
    """Host read a new (not yet processed) offer from the channel."""
    message_id: str
    sdp: str


@dataclass(frozen=True)
class AnswerReceived(PeerEvent):
    """Listener read an answer from the channel."""
    message_id: str
    in_reply_to: str
    sdp: str


@dataclass(frozen=True)
class RemoteCandidateReceived(PeerEvent):
    """A counterpart ICE candidate was appended to the channel."""
    candidate: IceCandidate


@dataclass(frozen=True)
class TeardownRequested(PeerEvent):
    """Participant left, speaking was revoked, or the session ended."""
    reason: str


# =============================================================================
# Adapter Events
# =============================================================================

@dataclass(frozen=True)
class RemoteDescriptionApplied(AdapterEvent):
    """set_remote_description completed."""


@dataclass(frozen=True)
class LocalDescriptionReady(AdapterEvent):
    """Local offer/answer was created and set; sdp is ready to publish."""
    kind: str  # "offer" | "answer"
    sdp: str


@dataclass(frozen=True)
class LocalCandidateGathered(AdapterEvent):
    candidate: str
    sdp_mid: str | None
    sdp_mline_index: int | None


@dataclass(frozen=True)
class IceStateChanged(AdapterEvent):
    ice_state: IceState


@dataclass(frozen=True)
class RemoteTrackReceived(AdapterEvent):
    track: Any


@dataclass(frozen=True)
class NegotiationFailed(AdapterEvent):
    """A negotiation step raised; stage names the step."""
    stage: str
    reason: str


@dataclass(frozen=True)
class NegotiationTimeout(AdapterEvent):
    """The round did not reach ICE connected in time."""


# =============================================================================
# Room / Presence Events
# =============================================================================

@dataclass(frozen=True)
class ParticipantJoined(Event):
    participant: Participant


@dataclass(frozen=True)
class ParticipantLeft(Event):
    participant_id: str


@dataclass(frozen=True)
class ParticipantUpdated(Event):
    """Own presence record changed (listener side); None when removed."""
    participant: Participant | None


@dataclass(frozen=True)
class SpeakRequestsChanged(Event):
    requests: tuple[SpeakRequest, ...]


@dataclass(frozen=True)
class RoomStatusChanged(Event):
    status: str | None
