"""
Per-peer negotiation and ICE state enumerations.

Rules:
- These enums define ONLY the states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class NegotiationState(str, Enum):
    """
    Offer/answer progress of one peer connection.

    Listener: IDLE -> OFFER_CREATED -> ANSWER_AWAITED -> CONNECTING -> STABLE
    Host:     IDLE -> HAVE_REMOTE_OFFER -> CONNECTING -> STABLE
    Either side ends in CLOSED; a new round may start from CLOSED.
    """

    IDLE = "IDLE"
    OFFER_CREATED = "OFFER_CREATED"
    ANSWER_AWAITED = "ANSWER_AWAITED"
    HAVE_REMOTE_OFFER = "HAVE_REMOTE_OFFER"
    CONNECTING = "CONNECTING"
    STABLE = "STABLE"
    CLOSED = "CLOSED"


class IceState(str, Enum):
    """
    ICE connectivity axis, independent of NegotiationState.

    NEW -> CHECKING -> CONNECTED -> {DISCONNECTED -> CONNECTED | FAILED} -> CLOSED
    """

    NEW = "new"
    CHECKING = "checking"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"
