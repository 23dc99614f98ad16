"""
Session Directory errors and user-facing store error messages.
"""

from __future__ import annotations

from spec import STORE_ERROR_FALLBACK, STORE_ERROR_MESSAGES


class DirectoryError(Exception):
    """Base class for directory failures."""


class SessionNotFound(DirectoryError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"session not found: {session_id}")
        self.session_id = session_id


class RegistrationNotFound(DirectoryError):
    def __init__(self, registration_id: str) -> None:
        super().__init__(f"registration not found: {registration_id}")
        self.registration_id = registration_id


class HostNotAuthorized(DirectoryError):
    """Only the designated speaker may host a session."""


class JoinRejected(DirectoryError):
    """Listener join refused before any signaling happened."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class StoreError(DirectoryError):
    """Document store failure carrying a backend error code."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


def describe_store_error(exc: BaseException) -> str:
    """Map a store error to the message shown to users."""
    code = getattr(exc, "code", None)
    # google.api_core exceptions expose the gRPC status as .grpc_status_code
    grpc_code = getattr(exc, "grpc_status_code", None)
    if code is None and grpc_code is not None:
        code = getattr(grpc_code, "name", str(grpc_code)).lower().replace("_", "-")
    if isinstance(code, str):
        return STORE_ERROR_MESSAGES.get(code, STORE_ERROR_FALLBACK)
    return STORE_ERROR_FALLBACK
