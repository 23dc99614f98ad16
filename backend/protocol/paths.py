"""
Per-room layout of the Signaling Channel.

All paths returned here are relative to rooms/{roomId}.
"""

from __future__ import annotations

from spec import (
    FORBIDDEN_PATH_CHARS,
    PATH_ANSWER,
    PATH_HOST_CANDIDATES,
    PATH_LISTENER_CANDIDATES,
    PATH_OFFER,
    PATH_PARTICIPANTS,
    PATH_SPEAK_REQUESTS,
    PATH_STATUS,
    PATH_WEBRTC,
)


class InvalidPathError(ValueError):
    """Raised for empty segments or segments holding reserved characters."""


def validate_segment(segment: str) -> str:
    if not segment:
        raise InvalidPathError("empty path segment")
    if "/" in segment or any(ch in FORBIDDEN_PATH_CHARS for ch in segment):
        raise InvalidPathError(f"invalid path segment: {segment!r}")
    return segment


def split_path(path: str) -> list[str]:
    """Split a slash-separated path; "" is the root."""
    if path in ("", "/"):
        return []
    return [validate_segment(part) for part in path.strip("/").split("/")]


def join_path(*parts: str) -> str:
    return "/".join(part.strip("/") for part in parts if part.strip("/"))


STATUS = PATH_STATUS
PARTICIPANTS = PATH_PARTICIPANTS
SPEAK_REQUESTS = PATH_SPEAK_REQUESTS


def participant(participant_id: str) -> str:
    return join_path(PATH_PARTICIPANTS, validate_segment(participant_id))


def can_speak(participant_id: str) -> str:
    return join_path(participant(participant_id), "canSpeak")


def muted(participant_id: str) -> str:
    return join_path(participant(participant_id), "muted")


def speak_request(request_id: str) -> str:
    return join_path(PATH_SPEAK_REQUESTS, validate_segment(request_id))


def peer(participant_id: str) -> str:
    """webrtc subtree of one listener: offer, answer and both candidate lists."""
    return join_path(PATH_WEBRTC, validate_segment(participant_id))


def offer(participant_id: str) -> str:
    return join_path(peer(participant_id), PATH_OFFER)


def answer(participant_id: str) -> str:
    return join_path(peer(participant_id), PATH_ANSWER)


def host_candidates(participant_id: str) -> str:
    return join_path(peer(participant_id), PATH_HOST_CANDIDATES)


def listener_candidates(participant_id: str) -> str:
    return join_path(peer(participant_id), PATH_LISTENER_CANDIDATES)
