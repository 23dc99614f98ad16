"""
Bounded record of processed signaling message ids.

Offers (and answers) are overwritten in place and replayed on every
subscription, so a manager sees the same message id more than once.
The cache is bounded by size (LRU eviction) and age (TTL).
"""

from __future__ import annotations

import time
from typing import Callable

from cachetools import TTLCache

from spec import DEDUP_CACHE_MAX_ENTRIES, DEDUP_CACHE_TTL_S


class ProcessedMessages:
    """Per-manager set of message ids that were already acted on."""

    def __init__(
        self,
        *,
        max_entries: int = DEDUP_CACHE_MAX_ENTRIES,
        ttl_s: float = DEDUP_CACHE_TTL_S,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache: TTLCache[str, bool] = TTLCache(maxsize=max_entries, ttl=ttl_s, timer=timer)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def check_and_mark(self, message_id: str) -> bool:
        """True when message_id is new (and is now recorded)."""
        if message_id in self._cache:
            return False
        self._cache[message_id] = True
        return True

    def forget(self, message_id: str) -> None:
        self._cache.pop(message_id, None)
