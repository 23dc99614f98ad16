"""
Participant presence record codec.

Stored at rooms/{roomId}/participants/{participantId}:

    {"id", "name", "role", "avatar", "joinedAt", "canSpeak", "muted"}
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from observability.logger import log_event


class Role(str, Enum):
    HOST = "host"
    LISTENER = "listener"


class PresenceDecodeError(ValueError):
    """Raised when a presence record is malformed."""


@dataclass(frozen=True)
class Participant:
    participant_id: str
    name: str
    role: Role
    avatar: str
    joined_at_ms: int
    can_speak: bool = False
    muted: bool = False

    @property
    def is_listener(self) -> bool:
        return self.role is Role.LISTENER


def encode_participant(participant: Participant) -> dict[str, Any]:
    return {
        "id": participant.participant_id,
        "name": participant.name,
        "role": participant.role.value,
        "avatar": participant.avatar,
        "joinedAt": participant.joined_at_ms,
        "canSpeak": participant.can_speak,
        "muted": participant.muted,
    }


def decode_participant(raw: Any, *, key: str | None = None) -> Participant:
    """
    Decode a presence record.

    The channel key wins when the record's own "id" is missing.

    Raises:
        PresenceDecodeError on malformed input.
    """
    if not isinstance(raw, Mapping):
        raise PresenceDecodeError("participant record is not a mapping")

    participant_id = raw.get("id") or key
    if not isinstance(participant_id, str) or not participant_id:
        raise PresenceDecodeError("participant record has no id")

    try:
        role = Role(raw.get("role"))
    except ValueError as exc:
        raise PresenceDecodeError(f"unknown role: {raw.get('role')!r}") from exc

    joined_at = raw.get("joinedAt", 0)
    if isinstance(joined_at, bool) or not isinstance(joined_at, (int, float)):
        raise PresenceDecodeError("invalid joinedAt")

    return Participant(
        participant_id=participant_id,
        name=str(raw.get("name") or ""),
        role=role,
        avatar=str(raw.get("avatar") or ""),
        joined_at_ms=int(joined_at),
        can_speak=bool(raw.get("canSpeak", False)),
        muted=bool(raw.get("muted", False)),
    )


def try_decode_participant(
    raw: Any,
    *,
    key: str | None = None,
    room_id: str | None = None,
) -> Participant | None:
    try:
        return decode_participant(raw, key=key)
    except PresenceDecodeError as exc:
        log_event({
            "event_type": "PRESENCE_DECODE_FAILED",
            "room_id": room_id,
            "key": key,
            "error": str(exc),
        })
        return None
