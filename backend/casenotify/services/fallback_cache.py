"""
Bounded TTL cache.

WHAT: A size-limited in-memory map whose entries expire after a fixed
time to live.

WHY: The delivery path keeps working through a database outage by
serving the last known rule matrix, admin credential, mailbox
credential and active provider per country. One cache is constructed
per application and injected into the services. Values are per process.

HOW: OrderedDict kept in least-recently-used order. Expired entries are
dropped lazily on access and when the map is full.
"""

import time
from collections import OrderedDict
from typing import Any, Callable, Generic, Hashable, Optional, Tuple, TypeVar


V = TypeVar("V")


class BoundedTTLCache(Generic[V]):
    """
    Size-limited map with per-entry TTL.

    Example:
        cache = BoundedTTLCache(max_size=2, ttl_seconds=60)
        cache.set("Singapore", rules)
        cache.get("Singapore")  # rules, until 60s pass or 2 newer keys evict it
    """

    def __init__(
        self,
        max_size: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, V]]" = OrderedDict()

    def get(self, key: Hashable, default: Any = None) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return default
        self._entries.move_to_end(key)
        return value

    def set(self, key: Hashable, value: V) -> None:
        self._entries[key] = (self._clock() + self.ttl_seconds, value)
        self._entries.move_to_end(key)
        if len(self._entries) > self.max_size:
            self.purge_expired()
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def pop(self, key: Hashable, default: Any = None) -> Optional[V]:
        """Remove and return a live entry (expired entries count as missing)."""
        value = self.get(key, _MISSING)
        if value is _MISSING:
            return default
        del self._entries[key]
        return value

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        return len(self._entries)


_MISSING: Any = object()
