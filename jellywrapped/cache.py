"""In-memory TTL cache for library metadata lookups.

Runtimes and genres change rarely, so lookups against jellyfin.db are kept
for a few minutes. The cache is constructed explicitly and handed to the
service; nothing here is module-level state.
"""

import logging
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    expires_at: float
    created_at: float


class MetadataCache:
    """Thread-safe TTL cache with a size cap.

    When full, the oldest 10% of entries are evicted before a new one is
    stored. ``clock`` returns seconds and can be replaced in tests.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_size: int = 5000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_if_needed(self) -> None:
        if len(self._entries) < self.max_size:
            return

        # Drop expired entries first, then the oldest 10%
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if len(self._entries) < self.max_size:
            return

        to_remove = max(1, self.max_size // 10)
        oldest = sorted(self._entries.items(), key=lambda item: item[1].created_at)
        for key, _ in oldest[:to_remove]:
            del self._entries[key]
        logger.debug(f"Evicted {to_remove} metadata cache entries")

    def get(self, key: str) -> tuple[bool, Any]:
        """Return ``(hit, value)``; a cached ``None`` is still a hit."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return False, None

            if entry.expires_at <= self._clock():
                del self._entries[key]
                self._misses += 1
                return False, None

            self._hits += 1
            return True, entry.value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        with self._lock:
            if key not in self._entries:
                self._evict_if_needed()
            now = self._clock()
            ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
            self._entries[key] = CacheEntry(value=value, expires_at=now + ttl, created_at=now)

    def get_many(self, keys: Iterable[str]) -> tuple[dict[str, Any], list[str]]:
        """Split keys into cached values and the keys still to be fetched."""
        found: dict[str, Any] = {}
        missing: list[str] = []
        with self._lock:
            for key in keys:
                hit, value = self.get(key)
                if hit:
                    found[key] = value
                else:
                    missing.append(key)
        return found, missing

    def set_many(self, values: dict[str, Any]) -> None:
        with self._lock:
            for key, value in values.items():
                self.set(key, value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total else 0.0,
            }
