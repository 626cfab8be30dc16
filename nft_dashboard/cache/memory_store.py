"""
In-process TTL cache.

Used for deduplicating identical upstream requests within a short window and
for short-lived derived views. Expired entries are dropped lazily on read and
by a periodic sweep task that the owner starts and stops explicitly.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

_UNSET = object()


@dataclass(slots=True)
class MemoryCacheEntry:
    value: Any
    expiry: Optional[float]
    created: float

    def is_expired(self, now: float) -> bool:
        return self.expiry is not None and self.expiry < now


class MemoryStore:
    """Key/value store with per-entry TTL, bounded size and hit/miss accounting."""

    def __init__(self,
                 name: str = "memory",
                 logger: Optional[logging.Logger] = None,
                 default_ttl: Optional[float] = 300,
                 max_items: int = 1000,
                 sweep_interval: float = 15 * 60,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.logger = logger or logging.getLogger(__name__)
        self.default_ttl = default_ttl
        self.max_items = max_items
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._store: Dict[str, MemoryCacheEntry] = {}
        self.hits = 0
        self.misses = 0
        self.last_sweep: Optional[float] = None
        self._sweep_task: Optional[asyncio.Task] = None

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._store.get(key)
        if entry is None:
            self.misses += 1
            return default
        if entry.is_expired(self._clock()):
            del self._store[key]
            self.misses += 1
            return default
        self.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: Any = _UNSET) -> None:
        """Store ``value``; a TTL of None or 0 never expires."""
        if ttl_seconds is _UNSET:
            ttl_seconds = self.default_ttl
        now = self._clock()
        if key in self._store:
            # re-insert so dict order keeps tracking creation time
            del self._store[key]
        elif len(self._store) >= self.max_items:
            self._evict_oldest()
        expiry = now + ttl_seconds if ttl_seconds else None
        self._store[key] = MemoryCacheEntry(value=value, expiry=expiry, created=now)

    def has(self, key: str) -> bool:
        entry = self._store.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            del self._store[key]
            return False
        return True

    def delete(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._store if key.startswith(prefix)]
        for key in doomed:
            del self._store[key]
        return len(doomed)

    def clear(self) -> int:
        size = len(self._store)
        self._store.clear()
        self.hits = 0
        self.misses = 0
        self.logger.debug(f"Cleared {size} entries from {self.name} cache")
        return size

    def keys(self) -> List[str]:
        now = self._clock()
        return [key for key, entry in self._store.items() if not entry.is_expired(now)]

    def __len__(self) -> int:
        return len(self._store)

    def sweep(self) -> int:
        """Remove every expired entry; returns how many were dropped."""
        now = self._clock()
        expired = [key for key, entry in self._store.items() if entry.is_expired(now)]
        for key in expired:
            del self._store[key]
        self.last_sweep = now
        if expired:
            self.logger.debug(f"Swept {len(expired)} expired entries from {self.name} cache, {len(self._store)} remaining")
        return len(expired)

    def _evict_oldest(self) -> int:
        # dicts preserve insertion order, and set() re-inserts on overwrite
        remove_count = max(1, int(len(self._store) * 0.1))
        oldest = list(self._store)[:remove_count]
        for key in oldest:
            del self._store[key]
        self.logger.debug(f"Evicted {len(oldest)} oldest entries from {self.name} cache")
        return len(oldest)

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        expired_count = sum(1 for entry in self._store.values() if entry.is_expired(now))
        lookups = self.hits + self.misses
        return {
            "name": self.name,
            "size": len(self._store),
            "valid_count": len(self._store) - expired_count,
            "expired_count": expired_count,
            "hits": self.hits,
            "misses": self.misses,
            "hit_ratio": round(self.hits / lookups, 4) if lookups else 0.0,
            "max_items": self.max_items,
            "last_sweep": self.last_sweep,
        }

    async def start(self) -> None:
        """Start the periodic sweep task."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name=f"{self.name}CacheSweep")
        self.logger.debug(f"Started {self.name} cache sweep (interval: {self.sweep_interval}s)")

    async def _sweep_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.sweep_interval)
                try:
                    self.sweep()
                except Exception as e:
                    self.logger.error(f"Error sweeping {self.name} cache: {e}")
        except asyncio.CancelledError:
            self.logger.debug(f"{self.name} cache sweep cancelled")
            raise

    async def stop(self) -> None:
        task, self._sweep_task = self._sweep_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()
