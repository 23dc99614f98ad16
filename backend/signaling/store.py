"""
Hierarchical key-value store backing the Signaling Channel.

Contract (SignalingStore):
- set/update/remove are last-write-wins point writes; setting None removes.
- push appends a child under a time-ordered unique key.
- on_child_added / on_value replay current state on subscribe.
- Handlers run asynchronously on the subscriber's event loop, in mutation
  order for a single subscription. No ordering is promised across paths.

MemorySignalingStore is the in-process implementation used by the server
and by tests.
"""

from __future__ import annotations

import asyncio
import copy
import random
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Mapping, Protocol

from observability.logger import log_event
from protocol.paths import split_path
from spec import PUSH_KEY_CHARS, PUSH_KEY_RANDOM_LEN, PUSH_KEY_TIMESTAMP_LEN


Unsubscribe = Callable[[], None]
ChildHandler = Callable[[str, Any], None]
ValueHandler = Callable[[Any], None]


class SignalingStore(Protocol):
    """Operations the Signaling Channel needs from its backing store."""

    async def set(self, path: str, value: Any) -> None: ...

    async def push(self, path: str, value: Any) -> str: ...

    async def update(self, path: str, values: Mapping[str, Any]) -> None: ...

    async def remove(self, path: str) -> None: ...

    async def get(self, path: str) -> Any: ...

    def on_child_added(self, path: str, handler: ChildHandler) -> Unsubscribe: ...

    def on_child_removed(self, path: str, handler: ChildHandler) -> Unsubscribe: ...

    def on_value(self, path: str, handler: ValueHandler) -> Unsubscribe: ...


# =============================================================================
# Push keys
# =============================================================================

class PushKeyGenerator:
    """
    Time-ordered unique keys.

    Keys sort lexicographically in generation order, including keys
    generated within the same millisecond.
    """

    def __init__(self, *, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()
        self._last_ms = -1
        self._last_random: list[int] = [0] * PUSH_KEY_RANDOM_LEN

    def next_key(self, now_ms: int | None = None) -> str:
        ts = time.time_ns() // 1_000_000 if now_ms is None else now_ms
        # Never go backwards, even if the wall clock does
        ts = max(ts, self._last_ms)

        if ts == self._last_ms:
            self._increment_random()
        else:
            self._last_random = [
                self._rng.randrange(len(PUSH_KEY_CHARS))
                for _ in range(PUSH_KEY_RANDOM_LEN)
            ]
        self._last_ms = ts

        stamp: list[str] = []
        remaining = ts
        for _ in range(PUSH_KEY_TIMESTAMP_LEN):
            stamp.append(PUSH_KEY_CHARS[remaining % 64])
            remaining //= 64
        stamp.reverse()

        return "".join(stamp) + "".join(PUSH_KEY_CHARS[i] for i in self._last_random)

    def _increment_random(self) -> None:
        i = PUSH_KEY_RANDOM_LEN - 1
        while i >= 0 and self._last_random[i] == 63:
            self._last_random[i] = 0
            i -= 1
        if i >= 0:
            self._last_random[i] += 1


# =============================================================================
# In-memory implementation
# =============================================================================

@dataclass
class _Subscription:
    kind: str  # "child_added" | "child_removed" | "value"
    segments: tuple[str, ...]
    handler: Callable[..., None]
    active: bool = True


def _as_children(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _prune(value: Any) -> Any:
    """Drop None leaves and empty containers."""
    if isinstance(value, Mapping):
        pruned = {k: _prune(v) for k, v in value.items()}
        pruned = {k: v for k, v in pruned.items() if v is not None}
        return pruned or None
    return value


class MemorySignalingStore:
    """
    In-process SignalingStore.

    Every mutation snapshots the subscribed paths it touches, applies the
    write, then diffs before/after to queue child_added, child_removed and
    value deliveries. Deliveries are drained from one FIFO via
    loop.call_soon so handlers never run inside the writer's call stack.
    """

    def __init__(self, *, key_generator: PushKeyGenerator | None = None) -> None:
        self._root: dict[str, Any] = {}
        self._subs: list[_Subscription] = []
        self._pending: Deque[tuple[_Subscription, tuple[Any, ...]]] = deque()
        self._drain_scheduled = False
        self._keys = key_generator or PushKeyGenerator()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read(self, segments: tuple[str, ...] | list[str]) -> Any:
        node: Any = self._root
        for segment in segments:
            if not isinstance(node, dict) or segment not in node:
                return None
            node = node[segment]
        return node

    async def get(self, path: str) -> Any:
        return copy.deepcopy(self._read(split_path(path)))

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the whole tree."""
        return copy.deepcopy(self._root)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set(self, path: str, value: Any) -> None:
        segments = split_path(path)
        self._mutate([(segments, value)])

    async def update(self, path: str, values: Mapping[str, Any]) -> None:
        base = split_path(path)
        writes = [(base + split_path(rel), value) for rel, value in values.items()]
        self._mutate(writes)

    async def remove(self, path: str) -> None:
        self._mutate([(split_path(path), None)])

    async def push(self, path: str, value: Any) -> str:
        key = self._keys.next_key()
        self._mutate([(split_path(path) + [key], value)])
        return key

    def _mutate(self, writes: list[tuple[list[str], Any]]) -> None:
        touched = [w[0] for w in writes]
        affected = [s for s in self._subs if s.active and self._related(s.segments, touched)]
        before = {id(s): copy.deepcopy(self._read(s.segments)) for s in affected}

        for segments, value in writes:
            self._write(segments, _prune(copy.deepcopy(value)))

        for sub in affected:
            self._diff(sub, before[id(sub)], self._read(sub.segments))

    @staticmethod
    def _related(sub: tuple[str, ...], touched: list[list[str]]) -> bool:
        for segments in touched:
            n = min(len(sub), len(segments))
            if tuple(segments[:n]) == sub[:n]:
                return True
        return False

    def _write(self, segments: list[str], value: Any) -> None:
        if not segments:
            self._root = value if isinstance(value, dict) else {}
            return

        node = self._root
        trail: list[tuple[dict[str, Any], str]] = []
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                if value is None:
                    return
                child = {}
                node[segment] = child
            trail.append((node, segment))
            node = child

        if value is None:
            node.pop(segments[-1], None)
        else:
            node[segments[-1]] = value

        # Remove containers emptied by the write
        for parent, segment in reversed(trail):
            if parent[segment]:
                break
            del parent[segment]

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_child_added(self, path: str, handler: ChildHandler) -> Unsubscribe:
        sub = self._subscribe("child_added", path, handler)
        for key, value in sorted(_as_children(self._read(sub.segments)).items()):
            self._enqueue(sub, (key, copy.deepcopy(value)))
        return self._unsubscriber(sub)

    def on_child_removed(self, path: str, handler: ChildHandler) -> Unsubscribe:
        sub = self._subscribe("child_removed", path, handler)
        return self._unsubscriber(sub)

    def on_value(self, path: str, handler: ValueHandler) -> Unsubscribe:
        sub = self._subscribe("value", path, handler)
        self._enqueue(sub, (copy.deepcopy(self._read(sub.segments)),))
        return self._unsubscriber(sub)

    def _subscribe(self, kind: str, path: str, handler: Callable[..., None]) -> _Subscription:
        sub = _Subscription(kind=kind, segments=tuple(split_path(path)), handler=handler)
        self._subs.append(sub)
        return sub

    def _unsubscriber(self, sub: _Subscription) -> Unsubscribe:
        def unsubscribe() -> None:
            sub.active = False
            if sub in self._subs:
                self._subs.remove(sub)
        return unsubscribe

    @property
    def subscription_count(self) -> int:
        return len(self._subs)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _diff(self, sub: _Subscription, old: Any, new: Any) -> None:
        if sub.kind == "value":
            if old != new:
                self._enqueue(sub, (copy.deepcopy(new),))
            return

        old_children = _as_children(old)
        new_children = _as_children(new)

        if sub.kind == "child_added":
            for key in sorted(new_children.keys() - old_children.keys()):
                self._enqueue(sub, (key, copy.deepcopy(new_children[key])))
        else:
            for key in sorted(old_children.keys() - new_children.keys()):
                self._enqueue(sub, (key, copy.deepcopy(old_children[key])))

    def _enqueue(self, sub: _Subscription, args: tuple[Any, ...]) -> None:
        self._pending.append((sub, args))
        if not self._drain_scheduled:
            self._drain_scheduled = True
            asyncio.get_running_loop().call_soon(self._drain)

    def _drain(self) -> None:
        self._drain_scheduled = False
        while self._pending:
            sub, args = self._pending.popleft()
            if not sub.active:
                continue
            try:
                sub.handler(*args)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "SIGNALING_HANDLER_ERROR",
                    "path": "/".join(sub.segments),
                    "subscription": sub.kind,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })

    @property
    def idle(self) -> bool:
        return not self._pending and not self._drain_scheduled

    async def flush(self) -> None:
        """Yield to the loop until every queued delivery has run."""
        while not self.idle:
            await asyncio.sleep(0)
