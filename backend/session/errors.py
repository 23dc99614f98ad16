"""
Session manager errors.
"""

from __future__ import annotations


class SessionSetupError(Exception):
    """
    Host session could not be opened.

    reason: "not_found" | "not_approved" | "ended" | "already_open" or the
    MediaAcquisitionError reason when the microphone failed.
    """

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason
