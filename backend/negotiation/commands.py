"""
Side-effect command definitions for the negotiation reducer.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from negotiation.events import EventType
from protocol.signals import IceCandidate


# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    Stable discriminants used for logging and runtime dispatch.
    """

    # Peer connection
    CREATE_PEER = "CREATE_PEER"
    APPLY_REMOTE_DESCRIPTION = "APPLY_REMOTE_DESCRIPTION"
    CREATE_OFFER = "CREATE_OFFER"
    CREATE_ANSWER = "CREATE_ANSWER"
    ADD_ICE_CANDIDATE = "ADD_ICE_CANDIDATE"
    CLOSE_PEER = "CLOSE_PEER"
    RELEASE_PEER = "RELEASE_PEER"

    # Signaling
    WRITE_SIGNAL = "WRITE_SIGNAL"
    PUSH_SIGNAL = "PUSH_SIGNAL"
    FORGET_MESSAGE = "FORGET_MESSAGE"

    # Playback
    START_PLAYBACK = "START_PLAYBACK"
    STOP_PLAYBACK = "STOP_PLAYBACK"

    # Timers
    START_TIMER = "START_TIMER"
    CANCEL_TIMER = "CANCEL_TIMER"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Peer Connection Commands
# =============================================================================

@dataclass(frozen=True)
class CreatePeer(Command):
    """
    Create the connection for (participant_id, generation).

    send_audio attaches the local stream's tracks; otherwise the connection
    is receive-only.
    """
    participant_id: str
    generation: int
    send_audio: bool
    command_type: CommandType = CommandType.CREATE_PEER


@dataclass(frozen=True)
class ApplyRemoteDescription(Command):
    participant_id: str
    generation: int
    kind: str  # "offer" | "answer"
    sdp: str
    command_type: CommandType = CommandType.APPLY_REMOTE_DESCRIPTION


@dataclass(frozen=True)
class CreateOffer(Command):
    """Create and set the local offer; adapter answers with LocalDescriptionReady."""
    participant_id: str
    generation: int
    command_type: CommandType = CommandType.CREATE_OFFER


@dataclass(frozen=True)
class CreateAnswer(Command):
    """Create and set the local answer; adapter answers with LocalDescriptionReady."""
    participant_id: str
    generation: int
    command_type: CommandType = CommandType.CREATE_ANSWER


@dataclass(frozen=True)
class AddIceCandidate(Command):
    participant_id: str
    generation: int
    candidate: IceCandidate
    command_type: CommandType = CommandType.ADD_ICE_CANDIDATE


@dataclass(frozen=True)
class ClosePeer(Command):
    """Close the connection instance of this generation, if it still exists."""
    participant_id: str
    generation: int
    command_type: CommandType = CommandType.CLOSE_PEER


@dataclass(frozen=True)
class ReleasePeer(Command):
    """Remove the connection from the manager's connection set."""
    participant_id: str
    generation: int
    reason: str
    command_type: CommandType = CommandType.RELEASE_PEER


# =============================================================================
# Signaling Commands
# =============================================================================

@dataclass(frozen=True)
class WriteSignal(Command):
    """Overwrite a channel path (offer/answer slots)."""
    path: str
    payload: dict[str, Any]
    command_type: CommandType = CommandType.WRITE_SIGNAL


@dataclass(frozen=True)
class PushSignal(Command):
    """Append to a channel list (ICE candidates)."""
    path: str
    payload: dict[str, Any]
    command_type: CommandType = CommandType.PUSH_SIGNAL


@dataclass(frozen=True)
class ForgetMessage(Command):
    """Drop a message id from the processed set so a re-delivery is retried."""
    message_id: str
    command_type: CommandType = CommandType.FORGET_MESSAGE


# =============================================================================
# Playback Commands
# =============================================================================

@dataclass(frozen=True)
class StartPlayback(Command):
    participant_id: str
    track: Any
    command_type: CommandType = CommandType.START_PLAYBACK


@dataclass(frozen=True)
class StopPlayback(Command):
    participant_id: str
    command_type: CommandType = CommandType.STOP_PLAYBACK


# =============================================================================
# Timer Commands
# =============================================================================

@dataclass(frozen=True)
class StartTimer(Command):
    """
    Request to start a named timer.

    On expiration, the runtime must inject the specified timeout event for
    (participant_id, generation).
    """
    timer_id: str
    duration_ms: int
    timeout_event_type: EventType
    participant_id: str
    generation: int
    command_type: CommandType = CommandType.START_TIMER


@dataclass(frozen=True)
class CancelTimer(Command):
    """Request to cancel a previously scheduled timer."""
    timer_id: str
    command_type: CommandType = CommandType.CANCEL_TIMER


# =============================================================================
# Observability Commands
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Request to emit a structured observability event."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
