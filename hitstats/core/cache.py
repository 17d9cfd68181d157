"""
TTL Cache

A small in-process cache with time-based expiry, a size bound and
explicit invalidation. Used for:
- /stats query results on the stats server (cleared on every hit write)
- resolved service instances in the registry resolver

Entries are evicted oldest-first when the cache is full. Every clear()
bumps a generation counter; put_if_unchanged() drops a value computed
before the last clear().
"""

import threading
import time
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


class TTLCache(Generic[K, V]):
    """
    Thread-safe mapping whose entries expire after `ttl_seconds`.

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_size: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: Dict[K, Tuple[float, V]] = {}
        self._lock = threading.Lock()
        self._generation = 0
        self.hits = 0
        self.misses = 0

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self, key: K, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key, _MISSING)
            if entry is _MISSING:
                self.misses += 1
                return default

            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                self.misses += 1
                return default

            self.hits += 1
            return value

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._store(key, value)

    def put_if_unchanged(self, key: K, value: V, generation: int) -> bool:
        """Store value only if clear() has not run since `generation` was read."""
        with self._lock:
            if generation != self._generation:
                return False
            self._store(key, value)
            return True

    def invalidate(self, key: K) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _store(self, key: K, value: V) -> None:
        if self._entries.pop(key, _MISSING) is _MISSING and len(self._entries) >= self.max_size:
            self._evict_oldest()
        self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def _evict_oldest(self) -> None:
        # dicts keep insertion order; expired entries go first
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if len(self._entries) >= self.max_size:
            oldest: Optional[K] = next(iter(self._entries), None)
            if oldest is not None:
                del self._entries[oldest]
