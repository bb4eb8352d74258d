"""Small in-process TTL cache used by the HTTP surface."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Generic, TypeVar

V = TypeVar("V")

DEFAULT_TTL_SECONDS = 300.0


class TTLCache(Generic[V]):
    """Key/value cache whose entries expire after a fixed time-to-live.

    Expired entries are evicted when read. `clock` returns seconds and is
    injectable so expiry can be tested without sleeping.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[float, V]] = {}

    def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: V) -> None:
        if self.ttl_seconds <= 0:
            return
        if key not in self._entries and len(self._entries) >= self._max_entries:
            self._evict_expired()
            if len(self._entries) >= self._max_entries:
                # Oldest insertion goes first.
                self._entries.pop(next(iter(self._entries)))
        self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def _evict_expired(self) -> None:
        now = self._clock()
        for key in [k for k, (exp, _) in self._entries.items() if now >= exp]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
