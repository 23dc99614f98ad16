"""
Session Directory data model.

Documents live in the "podcasts" collection (sessions) and the
"podcastRegistration" collection (proposed sessions awaiting approval).
Field names on the wire follow the stored documents (camelCase).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from spec import (
    DEFAULT_HOST_NAME,
    DEFAULT_MAX_PARTICIPANTS,
    DEFAULT_SESSION_TITLE,
)


class SessionStatus(str, Enum):
    """
    waiting/live/ended are driven by the host session;
    scheduled/approved are directory-only states before a host opens it.
    """

    SCHEDULED = "scheduled"
    APPROVED = "approved"
    WAITING = "waiting"
    LIVE = "live"
    ENDED = "ended"

    @classmethod
    def parse(cls, raw: Any) -> SessionStatus:
        try:
            return cls(raw)
        except ValueError:
            return cls.WAITING


class RegistrationStatus(str, Enum):
    PENDING = "pending"
    REJECTED = "rejected"


def _int(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value)


@dataclass(frozen=True)
class PodcastSession:
    session_id: str
    title: str
    host_id: str
    host_name: str
    status: SessionStatus
    approved: bool = False
    description: str = ""
    topic: str = ""
    speaker: str = ""
    date: str | None = None  # "YYYY-MM-DD"
    time: str | None = None  # "HH:MM"
    webrtc_room_id: str | None = None
    participant_count: int = 0
    max_participants: int = DEFAULT_MAX_PARTICIPANTS
    created_at_ms: int = 0
    ended_at_ms: int | None = None

    @property
    def room_id(self) -> str:
        """Signaling Channel namespace of this session."""
        return self.webrtc_room_id or self.session_id

    @property
    def scheduled_start(self) -> datetime | None:
        """Naive local datetime of the schedule; None when unscheduled or unparseable."""
        if not self.date:
            return None
        try:
            return datetime.strptime(f"{self.date} {self.time or '00:00'}", "%Y-%m-%d %H:%M")
        except ValueError:
            return None

    def with_status(self, status: SessionStatus) -> PodcastSession:
        return replace(self, status=status)

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> PodcastSession:
        speaker = str(data.get("speaker") or "")
        status = SessionStatus.parse(data.get("status"))
        approved = data.get("approved")
        if approved is None:
            approved = status is not SessionStatus.SCHEDULED
        return cls(
            session_id=doc_id,
            title=str(data.get("title") or DEFAULT_SESSION_TITLE),
            host_id=str(data.get("hostId") or ""),
            host_name=str(data.get("hostName") or speaker or DEFAULT_HOST_NAME),
            status=status,
            approved=bool(approved),
            description=str(data.get("description") or ""),
            topic=str(data.get("topic") or ""),
            speaker=speaker,
            date=data.get("scheduledDate") or data.get("date"),
            time=data.get("scheduledTime") or data.get("time"),
            webrtc_room_id=data.get("webrtcRoomId") or data.get("roomId"),
            participant_count=_int(data.get("participantCount"), 0),
            max_participants=_int(data.get("maxParticipants"), DEFAULT_MAX_PARTICIPANTS),
            created_at_ms=_int(data.get("createdAt"), 0),
            ended_at_ms=data.get("endedAt"),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "hostId": self.host_id,
            "hostName": self.host_name,
            "status": self.status.value,
            "approved": self.approved,
            "description": self.description,
            "topic": self.topic,
            "speaker": self.speaker,
            "scheduledDate": self.date,
            "scheduledTime": self.time,
            "webrtcRoomId": self.webrtc_room_id,
            "participantCount": self.participant_count,
            "maxParticipants": self.max_participants,
            "createdAt": self.created_at_ms,
            "endedAt": self.ended_at_ms,
        }


@dataclass(frozen=True)
class Registration:
    registration_id: str
    title: str
    topic: str
    date: str
    time: str
    speaker: str = ""
    user_uid: str | None = None
    status: RegistrationStatus = RegistrationStatus.PENDING
    created_at_ms: int = 0

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> Registration:
        try:
            status = RegistrationStatus(data.get("status", RegistrationStatus.PENDING.value))
        except ValueError:
            status = RegistrationStatus.PENDING
        return cls(
            registration_id=doc_id,
            title=str(data.get("title") or ""),
            topic=str(data.get("topic") or ""),
            date=str(data.get("date") or ""),
            time=str(data.get("time") or ""),
            speaker=str(data.get("speaker") or ""),
            user_uid=data.get("userUID"),
            status=status,
            created_at_ms=_int(data.get("createdAt"), 0),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "topic": self.topic,
            "date": self.date,
            "time": self.time,
            "speaker": self.speaker,
            "userUID": self.user_uid,
            "status": self.status.value,
            "createdAt": self.created_at_ms,
        }


@dataclass(frozen=True)
class JoinVerdict:
    joinable: bool
    reason: str
