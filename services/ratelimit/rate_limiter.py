# services/ratelimit/rate_limiter.py
"""
Per-client fixed-window rate limiting.

Two windows apply to every operation: an hourly burst window and a daily
quota window.  A request is counted only when both windows still have room,
so a rejected request never consumes quota.
"""

import hashlib
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from loguru import logger
from prometheus_client import Counter

from core.config import Settings
from core.exceptions import RateLimited

HOUR_SECONDS = 60 * 60
DAY_SECONDS = 24 * HOUR_SECONDS
OPERATIONS = ("read", "revalidate")

RATE_LIMIT_REJECTIONS = Counter(
    "web2md_rate_limit_rejections_total", "Requests rejected by the rate limiter", ["operation"]
)


@dataclass
class RateLimitBucket:
    count: int
    reset_at: float


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[int] = None


def client_key(ip: Optional[str], user_agent: Optional[str], salt: str = "web2md") -> str:
    """Opaque client id; raw IPs never end up in bucket keys or logs."""
    raw = f"{salt}:{ip or 'unknown'}:{(user_agent or '')[:100]}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:24]


class RateLimiter:
    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time):
        self.settings = settings
        self._clock = clock
        self._buckets: Dict[str, RateLimitBucket] = {}
        self._lock = threading.Lock()

    def limits(self, operation: str) -> Tuple[int, int]:
        if operation == "revalidate":
            return self.settings.RATE_LIMIT_REVALIDATE_HOURLY, self.settings.RATE_LIMIT_REVALIDATE_DAILY
        return self.settings.RATE_LIMIT_READ_HOURLY, self.settings.RATE_LIMIT_READ_DAILY

    def check(self, client: str, operation: str = "read") -> RateLimitDecision:
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown rate-limited operation: {operation}")

        now = self._clock()
        hourly, daily = self.limits(operation)
        hour_start = math.floor(now / HOUR_SECONDS) * HOUR_SECONDS
        day_start = math.floor(now / DAY_SECONDS) * DAY_SECONDS
        windows = [
            (f"{client}:{operation}:h:{hour_start}", hourly, hour_start + HOUR_SECONDS),
            (f"{client}:{operation}:d:{day_start}", daily, day_start + DAY_SECONDS),
        ]

        with self._lock:
            self._cleanup(now)

            buckets = []
            for key, limit, reset_at in windows:
                bucket = self._buckets.get(key) or RateLimitBucket(count=0, reset_at=reset_at)
                if bucket.count >= limit:
                    return RateLimitDecision(
                        allowed=False,
                        remaining=0,
                        reset_at=bucket.reset_at,
                        retry_after=max(1, math.ceil(bucket.reset_at - now)),
                    )
                buckets.append((key, limit, bucket))

            for key, _, bucket in buckets:
                bucket.count += 1
                self._buckets[key] = bucket

        # the tighter of the two windows decides what the client sees
        remaining, reset_at = min(
            (limit - bucket.count, bucket.reset_at) for _, limit, bucket in buckets
        )
        return RateLimitDecision(allowed=True, remaining=max(0, remaining), reset_at=reset_at)

    def enforce(self, client: str, operation: str = "read") -> RateLimitDecision:
        decision = self.check(client, operation)
        if not decision.allowed:
            RATE_LIMIT_REJECTIONS.labels(operation=operation).inc()
            logger.warning(f"Rate limit hit for client {client} ({operation}); retry in {decision.retry_after}s")
            raise RateLimited(retry_after=decision.retry_after)
        return decision

    def _cleanup(self, now: float) -> None:
        expired = [key for key, bucket in self._buckets.items() if now >= bucket.reset_at]
        for key in expired:
            del self._buckets[key]
