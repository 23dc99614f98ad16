"""
SPEC-AS-CONSTANTS
-----------------
Single source of truth for all behavioral invariants in the system.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final, Mapping, Tuple

# =============================================================================
# WebRTC / ICE
# =============================================================================

STUN_SERVER_URLS: Final[Tuple[str, ...]] = (
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
    "stun:stun2.l.google.com:19302",
)

# Start of a negotiation round -> ICE connected; exceeded == ICE failure
NEGOTIATION_TIMEOUT_MS: Final[int] = 30_000

# =============================================================================
# Signaling Channel layout
# =============================================================================

SIGNALING_ROOT: Final[str] = "rooms"

PATH_PARTICIPANTS: Final[str] = "participants"
PATH_WEBRTC: Final[str] = "webrtc"
PATH_OFFER: Final[str] = "offer"
PATH_ANSWER: Final[str] = "answer"
PATH_HOST_CANDIDATES: Final[str] = "hostIceCandidates"
PATH_LISTENER_CANDIDATES: Final[str] = "listenerIceCandidates"
PATH_SPEAK_REQUESTS: Final[str] = "speakRequests"
PATH_STATUS: Final[str] = "status"

# Characters rejected inside a single path segment
FORBIDDEN_PATH_CHARS: Final[str] = ".#$[]"

# Time-ordered push keys (8 timestamp chars + 12 random chars)
PUSH_KEY_CHARS: Final[str] = (
    "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"
)
PUSH_KEY_TIMESTAMP_LEN: Final[int] = 8
PUSH_KEY_RANDOM_LEN: Final[int] = 12

# =============================================================================
# Session lifecycle
# =============================================================================

# Host end -> removal of the room subtree
SIGNALING_CLEANUP_GRACE_S: Final[float] = 300.0

HOST_AVATAR: Final[str] = "\U0001f399️"
LISTENER_AVATAR: Final[str] = "\U0001f464"

SPEAK_REQUEST_COOLDOWN_S: Final[float] = 30.0

LISTENER_ID_PREFIX: Final[str] = "listener"
OFFER_ID_PREFIX: Final[str] = "offer"

LISTENER_NAME_ADJECTIVES: Final[Tuple[str, ...]] = (
    "Happy", "Clever", "Bright", "Swift", "Calm",
    "Brave", "Kind", "Wise", "Cool", "Smart",
)
LISTENER_NAME_NOUNS: Final[Tuple[str, ...]] = (
    "Listener", "Guest", "Visitor", "Friend", "Member",
    "Participant", "Attendee", "Viewer", "Observer", "Fan",
)

# =============================================================================
# De-duplication of processed signaling messages
# =============================================================================

DEDUP_CACHE_MAX_ENTRIES: Final[int] = 1024
DEDUP_CACHE_TTL_S: Final[float] = 3600.0

# =============================================================================
# Session Directory
# =============================================================================

DIRECTORY_COLLECTION: Final[str] = "podcasts"
REGISTRATION_COLLECTION: Final[str] = "podcastRegistration"

DEFAULT_MAX_PARTICIPANTS: Final[int] = 50
DEFAULT_SESSION_TITLE: Final[str] = "Untitled Podcast"
DEFAULT_HOST_NAME: Final[str] = "Unknown Host"

# Statuses surfaced by the public listing
LISTED_STATUSES: Final[Tuple[str, ...]] = ("approved", "scheduled", "waiting", "live")

# Higher sorts first; ties broken by newest created_at
STATUS_PRIORITY: Final[Mapping[str, int]] = {
    "live": 3,
    "waiting": 2,
    "approved": 2,
    "scheduled": 2,
    "ended": 1,
}

ENDED_SESSION_RETENTION_S: Final[int] = 24 * 60 * 60
ENDED_PURGE_INTERVAL_S: Final[int] = 60 * 60

ROOM_ID_PREFIX: Final[str] = "SKCMP"
ROOM_ID_RANDOM_LEN: Final[int] = 5
ROOM_ID_ALPHABET: Final[str] = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

WEBRTC_ROOM_PREFIX: Final[str] = "podcast"
WEBRTC_ROOM_RANDOM_LEN: Final[int] = 5

HOST_ID_PREFIX: Final[str] = "host"
HOST_ID_RANDOM_LEN: Final[int] = 7

BASE36_ALPHABET: Final[str] = "0123456789abcdefghijklmnopqrstuvwxyz"

# =============================================================================
# User-facing directory messages
# =============================================================================

MSG_SESSION_ENDED: Final[str] = "This podcast has ended"
MSG_ROOM_FULL: Final[str] = "Room is full (maximum {max} participants reached)"
MSG_STARTS_IN: Final[str] = "Starts in {amount} {unit}"
MSG_LIVE_NOW: Final[str] = "Live now"
MSG_OPEN: Final[str] = "Open"

STORE_ERROR_MESSAGES: Final[Mapping[str, str]] = {
    "permission-denied": "Access denied. Please check your permissions.",
    "unavailable": "Database temporarily unavailable. Please try again.",
    "unauthenticated": "Authentication required. Please log in.",
}
STORE_ERROR_FALLBACK: Final[str] = "An unexpected error occurred. Please try again."
