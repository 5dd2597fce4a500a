"""Rate limiting for upstream product sources.

Every adapter owns exactly one :class:`TokenBucket`.  Unlike a waiting
limiter, the bucket never blocks: a call that finds the bucket empty is
refused immediately and the adapter reports ``RATE_LIMITED`` for that call.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for a rate limit."""

    max_requests: int
    per_minutes: float = 1.0
    enabled: bool = True

    @property
    def refill_rate_per_ms(self) -> float:
        """Tokens added per millisecond."""
        window_ms = self.per_minutes * 60_000
        return self.max_requests / window_ms if window_ms > 0 else 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RateLimitConfig":
        return cls(
            max_requests=int(data.get("max_requests", data.get("maxRequests", 10))),
            per_minutes=float(data.get("per_minutes", data.get("perMinutes", 1))),
            enabled=bool(data.get("enabled", True)),
        )


class TokenBucket:
    """Non-blocking token bucket.

    Tokens refill lazily, based on the time elapsed since the previous
    refill, whenever the bucket is consulted.  ``try_consume`` is serialized
    with a lock so parallel dispatches can never spend the same token twice.
    """

    def __init__(
        self,
        capacity: float,
        refill_rate_per_ms: float,
        *,
        name: str = "bucket",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize token bucket.

        Args:
            capacity: Maximum tokens that can accumulate (the bucket starts full)
            refill_rate_per_ms: Tokens added per elapsed millisecond
            name: Label used in logs
            clock: Monotonic clock returning seconds
        """
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if refill_rate_per_ms < 0:
            raise ValueError("refill_rate_per_ms must not be negative")
        self.name = name
        self.capacity = float(capacity)
        self.refill_rate_per_ms = refill_rate_per_ms
        self.tokens = float(capacity)
        self._clock = clock
        self._last_refill = clock()
        self._lock = threading.Lock()
        self._granted = 0
        self._denied = 0

    @classmethod
    def from_config(
        cls,
        config: RateLimitConfig,
        *,
        name: str = "bucket",
        clock: Callable[[], float] = time.monotonic,
    ) -> Optional["TokenBucket"]:
        """Build a bucket from config; returns None when limiting is disabled."""
        if not config.enabled:
            return None
        return cls(config.max_requests, config.refill_rate_per_ms, name=name, clock=clock)

    def _refill(self) -> None:
        now = self._clock()
        elapsed_ms = max(now - self._last_refill, 0.0) * 1000
        self.tokens = min(self.capacity, self.tokens + elapsed_ms * self.refill_rate_per_ms)
        self._last_refill = now

    def try_consume(self, tokens: float = 1) -> bool:
        """Take ``tokens`` if available.

        Returns:
            True if the tokens were consumed, False (state unchanged apart
            from the refill) otherwise.
        """
        if tokens <= 0:
            raise ValueError("tokens must be positive")
        with self._lock:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                self._granted += 1
                return True
            self._denied += 1
        logger.debug("Rate limit reached for %s (%.2f tokens left)", self.name, self.tokens)
        return False

    def available(self) -> float:
        """Get available tokens without consuming any."""
        with self._lock:
            self._refill()
            return self.tokens

    def get_stats(self) -> Dict[str, float]:
        with self._lock:
            return {
                "granted": self._granted,
                "denied": self._denied,
                "tokens": round(self.tokens, 3),
                "capacity": self.capacity,
            }
