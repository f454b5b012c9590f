"""
In-process TTL cache for short-lived per-user computations.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from shared.logging import get_logger
from shared.periodic import PeriodicTask

DEFAULT_SWEEP_INTERVAL = 60.0


@dataclass
class CacheEntry:
    """A cached value and the absolute instant it stops being served."""
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheMetrics:
    """Tracks cache hit/miss statistics."""

    def __init__(self) -> None:
        self.hits = 0
        self.misses = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total


class TTLCache:
    """Key/value store whose entries expire at a wall-clock deadline.

    Expired entries are never returned. They are reclaimed lazily by
    ``get`` and in bulk by ``purge_expired``, which the background sweep
    started with ``start()`` calls on a fixed interval. The sweep only
    bounds memory.

    The store is local to the process. Several workers each keep their own
    copy, so hit rates drop as the process count grows.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None, name: str = "ttl_cache"):
        self.name = name
        self.logger = get_logger(f"downloads.{name}")
        self.metrics = CacheMetrics()
        self._clock = clock or time.time
        self._store: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[PeriodicTask] = None

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store ``value`` under ``key``, replacing any previous entry."""
        entry = CacheEntry(value=value, expires_at=self._clock() + ttl_seconds)
        with self._lock:
            self._store[key] = entry

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for ``key`` or ``default``."""
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self.metrics.misses += 1
                return default

            if entry.is_expired(now):
                del self._store[key]
                self.metrics.misses += 1
                return default

            self.metrics.hits += 1
            return entry.value

    def __contains__(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            return entry is not None and not entry.is_expired(now)

    def delete(self, key: str) -> None:
        """Remove ``key``. Missing keys are ignored."""
        with self._lock:
            self._store.pop(key, None)

    def delete_by_prefix(self, prefix: str) -> int:
        """Remove every key starting with ``prefix``; returns how many went."""
        with self._lock:
            doomed = [key for key in self._store if key.startswith(prefix)]
            for key in doomed:
                del self._store[key]
        return len(doomed)

    def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._store.clear()

    def purge_expired(self) -> int:
        """Evict every expired entry; returns the number evicted."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._store.items() if entry.is_expired(now)]
            for key in expired:
                del self._store[key]

        if expired:
            self.logger.debug("Purged expired cache entries", count=len(expired))
        return len(expired)

    def keys(self) -> List[str]:
        """Snapshot of stored keys, including ones not yet reclaimed."""
        with self._lock:
            return list(self._store)

    @property
    def size(self) -> int:
        """Current number of stored entries."""
        with self._lock:
            return len(self._store)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "entries": self.size,
            "hits": self.metrics.hits,
            "misses": self.metrics.misses,
            "hit_rate": round(self.metrics.hit_rate, 4),
            "sweeper_running": bool(self._sweeper and self._sweeper.running),
        }

    async def start(self, interval_seconds: float = DEFAULT_SWEEP_INTERVAL,
                    on_sweep: Optional[Callable[[int], None]] = None):
        """Start the periodic sweep of expired entries."""
        if self._sweeper and self._sweeper.running:
            return

        def _sweep():
            evicted = self.purge_expired()
            if on_sweep:
                on_sweep(evicted)
            return evicted

        self._sweeper = PeriodicTask(self.name, interval_seconds, _sweep)
        await self._sweeper.start()

    async def stop(self):
        """Stop the periodic sweep."""
        if self._sweeper:
            await self._sweeper.stop()
            self._sweeper = None
