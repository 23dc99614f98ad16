"""
Signaling Channel adapter.

Room-scoped wrapper over a SignalingStore. Every path given to this class is
relative to rooms/{roomId}, so one session's channel can never address
another session's data.

Error policy:
- Store failures on write/remove/read are logged (SIGNALING_*_FAILED) and
  reported through the return value. They are never raised and never retried.
"""

from __future__ import annotations

from typing import Any, Mapping

from observability.logger import log_event
from protocol.paths import join_path, validate_segment
from signaling.store import ChildHandler, SignalingStore, Unsubscribe, ValueHandler
from spec import SIGNALING_ROOT


class SignalingChannel:
    """
    One channel == one room namespace.

    write_value: idempotent last-write-wins
    push_value: uniquely keyed, insertion-ordered child
    subscribe_*: replaying subscriptions, returning an unsubscribe handle
    """

    def __init__(
        self,
        store: SignalingStore,
        room_id: str,
        *,
        root: str = SIGNALING_ROOT,
    ) -> None:
        self._store = store
        self.room_id = validate_segment(room_id)
        self._base = join_path(root, self.room_id)

    def absolute(self, path: str) -> str:
        return join_path(self._base, path)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def write_value(self, path: str, value: Any) -> bool:
        try:
            await self._store.set(self.absolute(path), value)
            return True
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_failure("SIGNALING_WRITE_FAILED", path, exc)
            return False

    async def push_value(self, path: str, value: Any) -> str | None:
        """Returns the new child key, or None when the write failed."""
        try:
            return await self._store.push(self.absolute(path), value)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_failure("SIGNALING_PUSH_FAILED", path, exc)
            return None

    async def update_values(self, values: Mapping[str, Any], path: str = "") -> bool:
        """Atomic multi-path update relative to path."""
        try:
            await self._store.update(self.absolute(path), values)
            return True
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_failure("SIGNALING_UPDATE_FAILED", path, exc)
            return False

    async def remove_value(self, path: str = "") -> bool:
        """Remove a subtree; "" removes the whole room."""
        try:
            await self._store.remove(self.absolute(path))
            return True
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_failure("SIGNALING_REMOVE_FAILED", path, exc)
            return False

    async def read_value(self, path: str) -> Any:
        try:
            return await self._store.get(self.absolute(path))
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_failure("SIGNALING_READ_FAILED", path, exc)
            return None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe_child_added(self, path: str, handler: ChildHandler) -> Unsubscribe:
        return self._store.on_child_added(self.absolute(path), handler)

    def subscribe_child_removed(self, path: str, handler: ChildHandler) -> Unsubscribe:
        return self._store.on_child_removed(self.absolute(path), handler)

    def subscribe_value(self, path: str, handler: ValueHandler) -> Unsubscribe:
        return self._store.on_value(self.absolute(path), handler)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _log_failure(self, event_type: str, path: str, exc: Exception) -> None:
        log_event({
            "event_type": event_type,
            "room_id": self.room_id,
            "path": path,
            "exception": type(exc).__name__,
            "message": str(exc),
        })
