"""
Peer connection adapter contract.

This module defines the *interface only*: no negotiation decisions, no
buffering, no retries live here.

Key invariants:
- Connection generations are owned by the negotiation reducer. Adapters
  never generate or mutate them; they stamp every emitted event with the
  generation they were created for.
- The adapter emits events (local candidates, ICE state, remote tracks);
  it does not call the reducer or make state transitions.
- Methods raise on failure; the runtime turns failures into
  NegotiationFailed events.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Sequence

from negotiation.events import Event
from protocol.signals import IceCandidate


EmitEvent = Callable[[Event], None]


class PeerConnection(ABC):
    """
    One WebRTC peer connection to one counterpart.

    Implementations are responsible for:
    - Applying remote descriptions and candidates
    - Creating and setting local offers/answers
    - Emitting LocalCandidateGathered, IceStateChanged and
      RemoteTrackReceived for their generation

    Note: emit_event callback is synchronous and only enqueues.
    """

    participant_id: str
    generation: int

    @abstractmethod
    def add_track(self, track: Any) -> None:
        """Attach an outbound local track (before creating the description)."""
        raise NotImplementedError

    @abstractmethod
    async def set_remote_description(self, kind: str, sdp: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def create_offer(self) -> str:
        """Create an offer, set it as local description, return its SDP."""
        raise NotImplementedError

    @abstractmethod
    async def create_answer(self) -> str:
        """Create an answer, set it as local description, return its SDP."""
        raise NotImplementedError

    @abstractmethod
    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. MUST be idempotent."""
        raise NotImplementedError


class PeerConnectionFactory(ABC):
    """Creates PeerConnection instances wired to a manager's event queue."""

    @abstractmethod
    def create(
        self,
        *,
        participant_id: str,
        generation: int,
        ice_servers: Sequence[dict[str, Any]],
        receive_only: bool,
        emit_event: EmitEvent,
    ) -> PeerConnection:
        """
        Build a connection.

        receive_only: add a recvonly audio transceiver instead of expecting
        outbound tracks.
        """
        raise NotImplementedError
