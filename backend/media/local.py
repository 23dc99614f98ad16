"""
Local microphone stream contract.

A LocalStream is attached read-only to every peer connection of a manager;
only the manager that acquired it stops it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Protocol


class MediaAcquisitionError(Exception):
    """
    Microphone could not be acquired.

    reason: "permission_denied" | "no_device" | "unsupported" | "unknown"
    """

    def __init__(self, message: str, *, reason: str = "unknown") -> None:
        super().__init__(message)
        self.reason = reason


class LocalTrack(Protocol):
    kind: str
    enabled: bool

    def stop(self) -> None: ...


@dataclass
class LocalStream:
    tracks: list[Any] = field(default_factory=list)
    stopped: bool = False

    def audio_tracks(self) -> list[Any]:
        return [t for t in self.tracks if getattr(t, "kind", None) == "audio"]

    def set_enabled(self, enabled: bool) -> None:
        """Mute/unmute without renegotiating."""
        for track in self.audio_tracks():
            track.enabled = enabled

    @property
    def muted(self) -> bool:
        tracks = self.audio_tracks()
        return bool(tracks) and not any(t.enabled for t in tracks)

    def stop(self) -> None:
        if self.stopped:
            return
        for track in self.tracks:
            track.stop()
        self.stopped = True


class MediaSource(ABC):
    """Acquires the local microphone."""

    @abstractmethod
    async def acquire(self) -> LocalStream:
        """
        Acquire an audio-only stream.

        Raises:
            MediaAcquisitionError when the device is missing, denied, or
            the platform has no capture support.
        """
        raise NotImplementedError
