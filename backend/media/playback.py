"""
Playback elements for inbound remote audio, keyed by counterpart id.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class PlaybackElement:
    participant_id: str
    track: Any
    muted: bool = False


class PlaybackRegistry:
    """
    One playback element per counterpart.

    attach() replaces any previous element for the same participant;
    detach() is idempotent. Subclasses hook _on_attach/_on_detach to drive
    real output.
    """

    def __init__(self) -> None:
        self._elements: dict[str, PlaybackElement] = {}
        self._muted = False

    @property
    def output_muted(self) -> bool:
        return self._muted

    def participant_ids(self) -> set[str]:
        return set(self._elements)

    def get(self, participant_id: str) -> PlaybackElement | None:
        return self._elements.get(participant_id)

    def attach(self, participant_id: str, track: Any) -> PlaybackElement:
        self.detach(participant_id)
        element = PlaybackElement(participant_id=participant_id, track=track, muted=self._muted)
        self._elements[participant_id] = element
        self._on_attach(element)
        return element

    def detach(self, participant_id: str) -> None:
        element = self._elements.pop(participant_id, None)
        if element is not None:
            self._on_detach(element)

    def set_muted(self, muted: bool) -> None:
        """Mute every current and future element."""
        self._muted = muted
        for element in self._elements.values():
            element.muted = muted

    def clear(self) -> None:
        for participant_id in list(self._elements):
            self.detach(participant_id)

    def _on_attach(self, element: PlaybackElement) -> None:
        """Hook for subclasses."""

    def _on_detach(self, element: PlaybackElement) -> None:
        """Hook for subclasses."""
