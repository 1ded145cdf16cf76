"""
Per-user rate limiter for listing reports.

Rolling window: a user may file REPORT_RATE_LIMIT_MAX reports within any
REPORT_RATE_LIMIT_WINDOW_SECONDS. Only successfully created reports count,
so the check runs before creation and the hit is recorded after it.

The default store is process-local and resets on restart; the redis store
shares the window across workers and fails open when Redis is unavailable.
"""
import logging
import time
import uuid
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, List, Optional

from tcgmarket.core.config import get_settings
from tcgmarket.core.exceptions import RateLimitError
from tcgmarket.core.prometheus_metrics import (
    redis_operations_total,
    report_rate_limiter_requests_total,
)
from tcgmarket.core.redis_client import get_redis

settings = get_settings()
logger = logging.getLogger(__name__)


class InMemoryWindowStore:
    """Timestamps of recent hits per key, held in this process."""

    backend = "memory"

    def __init__(self):
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._next_sweep = 0.0

    async def recent(self, key: str, since: float) -> List[float]:
        hits = self._hits.get(key)
        if not hits:
            return []
        while hits and hits[0] <= since:
            hits.popleft()
        if not hits:
            del self._hits[key]
            return []
        return list(hits)

    async def add(self, key: str, timestamp: float, ttl_seconds: int) -> None:
        self._hits[key].append(timestamp)
        if timestamp >= self._next_sweep:
            self._sweep(timestamp - ttl_seconds)
            self._next_sweep = timestamp + ttl_seconds

    def _sweep(self, cutoff: float) -> None:
        """Drop keys whose newest hit is older than ``cutoff``."""
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]

    async def clear(self, key: Optional[str] = None) -> None:
        if key is None:
            self._hits.clear()
            self._next_sweep = 0.0
        else:
            self._hits.pop(key, None)


class RedisWindowStore:
    """Sorted set per key (score = timestamp) shared by every worker."""

    backend = "redis"

    async def recent(self, key: str, since: float) -> List[float]:
        redis = await get_redis()
        if redis is None:
            logger.error("Report rate limiter: Redis unavailable, allowing request")
            redis_operations_total.labels(operation="zrange", status="unavailable").inc()
            return []
        try:
            pipe = redis.pipeline()
            pipe.zremrangebyscore(key, "-inf", since)
            pipe.zrange(key, 0, -1, withscores=True)
            _, members = await pipe.execute()
            redis_operations_total.labels(operation="zrange", status="ok").inc()
        except Exception as e:
            # Fail open - the limiter is best effort
            logger.error(f"Report rate limiter error for key {key}: {e}")
            redis_operations_total.labels(operation="zrange", status="error").inc()
            return []
        return sorted(score for _, score in members)

    async def add(self, key: str, timestamp: float, ttl_seconds: int) -> None:
        redis = await get_redis()
        if redis is None:
            redis_operations_total.labels(operation="zadd", status="unavailable").inc()
            return
        try:
            pipe = redis.pipeline()
            pipe.zadd(key, {f"{timestamp:.6f}:{uuid.uuid4().hex[:8]}": timestamp})
            pipe.expire(key, ttl_seconds)
            await pipe.execute()
            redis_operations_total.labels(operation="zadd", status="ok").inc()
        except Exception as e:
            logger.error(f"Report rate limiter failed to record hit for key {key}: {e}")
            redis_operations_total.labels(operation="zadd", status="error").inc()

    async def clear(self, key: Optional[str] = None) -> None:
        redis = await get_redis()
        if redis is None or key is None:
            return
        await redis.delete(key)


class ReportRateLimiter:
    """Rolling-window limiter for report creation."""

    def __init__(
        self,
        store=None,
        max_reports: Optional[int] = None,
        window_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store or InMemoryWindowStore()
        self.max_reports = settings.REPORT_RATE_LIMIT_MAX if max_reports is None else max_reports
        self.window_seconds = (
            settings.REPORT_RATE_LIMIT_WINDOW_SECONDS if window_seconds is None else window_seconds
        )
        self._clock = clock

    def _get_key(self, user_id: str) -> str:
        return f"rate_limit:reports:{user_id}"

    async def check(self, user_id: str) -> None:
        """
        Raise if the user already filed max_reports within the window.

        Raises:
            RateLimitError: with retry_after set to when the oldest hit ages out
        """
        now = self._clock()
        hits = await self.store.recent(self._get_key(user_id), now - self.window_seconds)
        allowed = len(hits) < self.max_reports
        report_rate_limiter_requests_total.labels(
            backend=self.store.backend, allowed=str(allowed).lower()
        ).inc()
        if allowed:
            return

        oldest = hits[0] if hits else now
        retry_after = max(0.0, oldest + self.window_seconds - now)
        logger.info(
            f"Report rate limit hit for user {user_id}",
            extra={"recent_reports": len(hits), "retry_after": retry_after},
        )
        raise RateLimitError(
            detail="Too many reports; try again later",
            retry_after=retry_after,
            user_id=user_id,
        )

    async def record(self, user_id: str) -> None:
        """Count one successfully created report."""
        await self.store.add(self._get_key(user_id), self._clock(), self.window_seconds * 2)

    async def reset(self, user_id: Optional[str] = None) -> None:
        """Forget recorded hits for one user, or for everyone (in-memory store only)."""
        await self.store.clear(self._get_key(user_id) if user_id else None)


# Global instance
_report_rate_limiter: Optional[ReportRateLimiter] = None


def get_report_rate_limiter() -> ReportRateLimiter:
    """Get or create the global report rate limiter for the configured backend."""
    global _report_rate_limiter
    if _report_rate_limiter is None:
        store = RedisWindowStore() if settings.REPORT_RATE_LIMIT_BACKEND == "redis" else InMemoryWindowStore()
        _report_rate_limiter = ReportRateLimiter(store=store)
    return _report_rate_limiter
