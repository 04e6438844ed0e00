from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Optional

from .models import CacheEntry, CacheError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_MAX_ENTRIES = 100
DEFAULT_PURGE_FRACTION = 0.2


@dataclass(slots=True)
class CacheStats:
    entries: int
    hits: int
    misses: int
    evictions: int


class CacheStore:
    """In-process TTL cache shared by every cached accessor of an application.

    Keys are stored under ``<namespace>:<key>``. Entries past their expiry are
    treated as absent and dropped on the next read. When the store is full the
    oldest fifth of entries (by insertion time) is purged before the write.
    Internal failures are logged and swallowed so callers fall back to a fresh
    fetch.
    """

    def __init__(
        self,
        *,
        namespace: str = "app_cache",
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        purge_fraction: float = DEFAULT_PURGE_FRACTION,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.namespace = namespace
        self.default_ttl = default_ttl
        self.max_entries = max(1, int(max_entries))
        self.purge_fraction = purge_fraction
        self._clock = clock
        self._lock = Lock()
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Optional[Any]:
        try:
            cache_key = self._key(key)
            with self._lock:
                entry = self._entries.get(cache_key)
                if entry is None:
                    self._misses += 1
                    return None
                if not entry.is_live(self._clock()):
                    del self._entries[cache_key]
                    self._misses += 1
                    return None
                self._hits += 1
                return entry.value
        except Exception as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if value is None:
            return
        lifetime = self.default_ttl if ttl is None else ttl
        try:
            cache_key = self._key(key)
            with self._lock:
                if cache_key not in self._entries and len(self._entries) >= self.max_entries:
                    self._purge_oldest(math.floor(self.max_entries * self.purge_fraction))
                now = self._clock()
                # Re-inserting moves the key to the end of the insertion order.
                self._entries.pop(cache_key, None)
                self._entries[cache_key] = CacheEntry(
                    value=value, created_at=now, expires_at=now + lifetime
                )
        except Exception as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)

    def invalidate(self, key: str) -> None:
        try:
            with self._lock:
                self._entries.pop(self._key(key), None)
        except Exception as exc:
            logger.warning("Cache invalidation failed for %s: %s", key, exc)

    def invalidate_prefix(self, prefix: str) -> int:
        try:
            full_prefix = self._key(prefix)
            with self._lock:
                doomed = [key for key in self._entries if key.startswith(full_prefix)]
                for key in doomed:
                    del self._entries[key]
        except Exception as exc:
            logger.warning("Cache prefix invalidation failed for %s: %s", prefix, exc)
            return 0
        if doomed:
            logger.debug("Invalidated %d cache entries under %s", len(doomed), prefix)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries = {}
        logger.debug("Cache cleared")

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                entries=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
            )

    def _key(self, key: str) -> str:
        if not isinstance(key, str) or not key:
            raise CacheError(f"invalid cache key {key!r}")
        return f"{self.namespace}:{key}"

    def _purge_oldest(self, count: int) -> None:
        count = max(1, count)
        try:
            oldest = sorted(self._entries.items(), key=lambda item: item[1].created_at)
            for cache_key, _entry in oldest[:count]:
                del self._entries[cache_key]
                self._evictions += 1
        except Exception as exc:
            logger.warning("Cache purge failed: %s", exc)
