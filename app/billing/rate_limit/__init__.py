from app.billing.rate_limit.errors import RateLimitedError
from app.billing.rate_limit.limiter import (
    RateLimiter,
    build_rate_limiter,
    dispose_rate_limiter,
    get_rate_limiter,
)
from app.billing.rate_limit.stores import CounterStore, InMemoryCounterStore, RedisCounterStore
from app.billing.rate_limit.types import RateLimitBackend, RateLimitDecision

__all__ = [
    "CounterStore",
    "InMemoryCounterStore",
    "RateLimitBackend",
    "RateLimitDecision",
    "RateLimitedError",
    "RateLimiter",
    "RedisCounterStore",
    "build_rate_limiter",
    "dispose_rate_limiter",
    "get_rate_limiter",
]
