from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import lru_cache

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.billing.rate_limit.errors import RateLimitedError
from app.billing.rate_limit.stores import CounterStore, InMemoryCounterStore, RedisCounterStore
from app.billing.rate_limit.types import RateLimitBackend, RateLimitDecision
from app.core.config import get_settings

logger = structlog.get_logger(__name__)


class RateLimiter:
    def __init__(self, store: CounterStore) -> None:
        self._store = store

    @property
    def store(self) -> CounterStore:
        return self._store

    async def check_and_consume(
        self,
        key: str,
        *,
        limit: int,
        window: timedelta,
        now_utc: datetime | None = None,
    ) -> RateLimitDecision:
        if limit < 1:
            raise ValueError("limit must be positive")
        if window <= timedelta(0):
            raise ValueError("window must be positive")

        now_utc = now_utc or datetime.now(timezone.utc)
        count, reset_at = await self._store.increment(key, window=window, now_utc=now_utc)
        return RateLimitDecision(
            allowed=count <= limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
        )

    async def enforce(
        self,
        key: str,
        *,
        limit: int,
        window: timedelta,
        now_utc: datetime | None = None,
    ) -> RateLimitDecision:
        decision = await self.check_and_consume(key, limit=limit, window=window, now_utc=now_utc)
        if not decision.allowed:
            logger.info(
                "rate_limit_exceeded",
                key=key,
                limit=limit,
                reset_at=decision.reset_at.isoformat(),
            )
            raise RateLimitedError(key=key, decision=decision)
        return decision


def build_rate_limiter(*, backend: str, redis_url: str) -> RateLimiter:
    resolved = RateLimitBackend(backend.strip().lower())
    if resolved == RateLimitBackend.REDIS:
        return RateLimiter(RedisCounterStore(Redis.from_url(redis_url)))
    return RateLimiter(InMemoryCounterStore())


@lru_cache(maxsize=1)
def get_rate_limiter() -> RateLimiter:
    settings = get_settings()
    limiter = build_rate_limiter(backend=settings.rate_limit_backend, redis_url=settings.redis_url)
    logger.info("rate_limiter_configured", backend=settings.rate_limit_backend)
    return limiter


async def dispose_rate_limiter() -> None:
    """Drop a cached limiter whose Redis connections belong to the current loop."""
    if get_rate_limiter.cache_info().currsize == 0:
        return
    store = get_rate_limiter().store
    if not isinstance(store, RedisCounterStore):
        return
    get_rate_limiter.cache_clear()
    try:
        await store.aclose()
    except (RuntimeError, RedisError) as exc:
        logger.warning("rate_limiter_close_failed", error_type=type(exc).__name__)
