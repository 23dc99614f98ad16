"""
Per-peer negotiation state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need for one counterpart.
- No behavior, no helpers, no derived logic.
"""
from __future__ import annotations

from dataclasses import dataclass

from negotiation.enums.state import IceState, NegotiationState
from protocol.presence import Role
from protocol.signals import IceCandidate


@dataclass(frozen=True)
class PeerState:
    """Immutable snapshot of one peer connection's negotiation state."""

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------
    # Counterpart participant (host side: the listener; listener side: the host)
    participant_id: str
    # Local participant id
    local_id: str
    # Local role
    role: Role

    # ------------------------------------------------------------------
    # Connection instance tracking
    # ------------------------------------------------------------------
    # Bumped for every new connection instance; never reused
    generation: int = 0
    has_connection: bool = False

    # ------------------------------------------------------------------
    # Negotiation
    # ------------------------------------------------------------------
    negotiation: NegotiationState = NegotiationState.IDLE
    ice: IceState = IceState.NEW
    # Offer message id of the current round
    negotiation_id: str | None = None
    send_audio: bool = False
    remote_description_set: bool = False
    round_started_ts_ms: int | None = None

    # Remote candidates waiting for set_remote_description, in arrival order
    pending_candidates: tuple[IceCandidate, ...] = ()

    # ------------------------------------------------------------------
    # Media / diagnostics
    # ------------------------------------------------------------------
    has_inbound_audio: bool = False
    last_error: str | None = None
