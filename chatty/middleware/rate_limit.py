"""
In-memory token-bucket rate limiting per client
"""

import time
from typing import Dict, Optional, Tuple
from dataclasses import dataclass
from threading import Lock

from chatty.config import settings


@dataclass
class RateLimitConfig:
    """Rate limit configuration"""
    requests_per_minute: int = 120
    burst_size: int = 20


class RateLimiter:
    """
    Token bucket rate limiter keyed by client (IP, or IP plus account)
    """

    def __init__(self, config: Optional[RateLimitConfig] = None):
        self.config = config or RateLimitConfig()
        self._buckets: Dict[str, Tuple[float, float]] = {}
        self._lock = Lock()

    def is_allowed(self, key: str) -> bool:
        """
        Consume one token for `key`.
        Returns True if allowed, False if rate limited
        """
        with self._lock:
            now = time.monotonic()
            last_update, tokens = self._buckets.get(key, (now, float(self.config.burst_size)))

            tokens_per_second = self.config.requests_per_minute / 60.0
            tokens = min(
                float(self.config.burst_size),
                tokens + (now - last_update) * tokens_per_second,
            )

            if tokens >= 1:
                self._buckets[key] = (now, tokens - 1)
                return True

            self._buckets[key] = (now, tokens)
            return False

    def cleanup_old_entries(self, max_age_seconds: int = 3600):
        """Forget clients idle longer than `max_age_seconds`"""
        with self._lock:
            now = time.monotonic()
            stale = [
                key for key, (last_update, _) in self._buckets.items()
                if now - last_update > max_age_seconds
            ]
            for key in stale:
                del self._buckets[key]

    def reset(self):
        with self._lock:
            self._buckets.clear()

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "tracked_clients": len(self._buckets),
                "config": {
                    "requests_per_minute": self.config.requests_per_minute,
                    "burst_size": self.config.burst_size
                }
            }


# General API limiter
rate_limiter = RateLimiter(RateLimitConfig(
    requests_per_minute=settings.RATE_LIMIT_PER_MINUTE,
    burst_size=max(1, settings.RATE_LIMIT_PER_MINUTE // 6),
))

# Stricter limiter for sign-up / sign-in
auth_rate_limiter = RateLimiter(RateLimitConfig(
    requests_per_minute=settings.AUTH_RATE_LIMIT_PER_MINUTE,
    burst_size=max(1, settings.AUTH_RATE_LIMIT_PER_MINUTE // 3),
))
