"""
Lifecycle status of the session managers.

Tracked separately from the per-peer negotiation state: a host can be LIVE
while individual peer connections are still negotiating or torn down.
"""
from enum import Enum


class HostStatus(Enum):
    IDLE = "IDLE"          # Constructed, open() not called
    LOADING = "LOADING"    # Verifying the session, acquiring the microphone
    WAITING = "WAITING"    # Room seeded, no listener yet
    LIVE = "LIVE"          # At least one listener joined
    ENDED = "ENDED"        # Host ended the session
    LEFT = "LEFT"          # Host left without ending
    ERROR = "ERROR"        # Setup failed; not retried


class ListenerStatus(Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"      # Joined, negotiating with the host
    CONNECTED = "CONNECTED"        # ICE connected to the host
    DISCONNECTED = "DISCONNECTED"  # Connection torn down; no auto-reconnect
    NOT_FOUND = "NOT_FOUND"        # Session missing or not approved
    REJECTED = "REJECTED"          # Not joinable (schedule, capacity)
    ENDED = "ENDED"                # Session ended by the host
    LEFT = "LEFT"
