"""In-process TTL cache for search results.

One :class:`TTLCache` is owned by each adapter, plus one composite cache
owned by the orchestrator.  Entries expire lazily: a lookup that finds a
stale entry removes it and reports a miss.  Nothing is persisted; a restart
starts cold.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from shopsearch.core.data_models import CacheEntry

logger = logging.getLogger(__name__)

# Default TTL values (in seconds)
COMPOSITE_TTL = 300  # 5 minutes for merged multi-source results
SOURCE_TTL = 600  # 10 minutes for a single source's answer

T = TypeVar("T")


def _default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, tuple):
        return list(value)
    return str(value)


def make_cache_key(prefix: str, *parts: Any) -> str:
    """Generate a deterministic cache key.

    The parts are serialised as canonical JSON (sorted keys, sets sorted) so
    equal inputs always produce the same key regardless of dict ordering.

    Args:
        prefix: Key prefix (e.g., a source id or ``"multi-source"``)
        *parts: Values identifying the request

    Returns:
        ``"<prefix>:<sha256[:32]>"``
    """
    canonical = json.dumps(parts, sort_keys=True, default=_default, separators=(",", ":"))
    key_hash = hashlib.sha256(canonical.encode()).hexdigest()[:32]
    return f"{prefix}:{key_hash}"


class TTLCache(Generic[T]):
    """Manages cached values with TTL support."""

    def __init__(
        self,
        name: str,
        default_ttl: float = SOURCE_TTL,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            name: Cache name used in logs and stats
            default_ttl: Default time-to-live in seconds
            clock: Monotonic clock returning seconds
        """
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.name = name
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self.logger = logging.getLogger(f"{self.__class__.__name__}.{name}")

    def get(self, key: str) -> Optional[T]:
        """Get a cached value, or None if absent or expired."""
        with self._lock:
            entry = self._lookup(key)
            if entry is None:
                self._misses += 1
                self.logger.debug("Cache miss for key: %s", key)
                return None
            self._hits += 1
        self.logger.debug("Cache hit for key: %s", key)
        return entry.value

    def has(self, key: str) -> bool:
        with self._lock:
            return self._lookup(key) is not None

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> None:
        """Store ``value`` under ``key``, replacing any previous entry.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time-to-live in seconds (uses default if not specified)
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
        self.logger.debug("Cached key: %s (TTL: %ss)", key, ttl)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Clear all entries.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        self.logger.info("Cleared %d cache entries", count)
        return count

    def cleanup_expired(self) -> int:
        """Remove expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            self.logger.debug("Cleaned up %d expired cache entries", len(expired))
        return len(expired)

    def _lookup(self, key: str) -> Optional[CacheEntry[T]]:
        # caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dictionary with cache statistics
        """
        total = self._hits + self._misses
        hit_rate = (self._hits / total * 100) if total > 0 else 0.0
        return {
            "name": self.name,
            "entries": len(self),
            "hits": self._hits,
            "misses": self._misses,
            "total_requests": total,
            "hit_rate_percent": round(hit_rate, 2),
            "default_ttl": self.default_ttl,
        }
