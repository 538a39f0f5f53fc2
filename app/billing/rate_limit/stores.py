from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Protocol

from redis.asyncio import Redis


class CounterStore(Protocol):
    async def increment(
        self,
        key: str,
        *,
        window: timedelta,
        now_utc: datetime,
    ) -> tuple[int, datetime]:
        """Atomically bump the fixed-window counter for ``key``.

        Returns the count after the increment and the moment the window resets.
        A key whose window already elapsed starts a new window at ``now_utc``.
        """


class InMemoryCounterStore:
    """Process-local counters. Correct for a single node only."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[int, datetime]] = {}

    async def increment(
        self,
        key: str,
        *,
        window: timedelta,
        now_utc: datetime,
    ) -> tuple[int, datetime]:
        with self._lock:
            current = self._windows.get(key)
            if current is None or now_utc >= current[1]:
                current = (0, now_utc + window)
            count, reset_at = current[0] + 1, current[1]
            self._windows[key] = (count, reset_at)
            return count, reset_at

    def purge_expired(self, *, now_utc: datetime) -> int:
        with self._lock:
            expired = [key for key, (_, reset_at) in self._windows.items() if now_utc >= reset_at]
            for key in expired:
                del self._windows[key]
            return len(expired)


class RedisCounterStore:
    """Shared counters for multi-instance deployments (Redis >= 7 for PEXPIRE NX)."""

    def __init__(self, redis_client: Redis, *, key_prefix: str = "ratelimit:") -> None:
        self._redis = redis_client
        self._key_prefix = key_prefix

    async def increment(
        self,
        key: str,
        *,
        window: timedelta,
        now_utc: datetime,
    ) -> tuple[int, datetime]:
        redis_key = f"{self._key_prefix}{key}"
        window_ms = max(1, int(window.total_seconds() * 1000))
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(redis_key)
            pipe.pexpire(redis_key, window_ms, nx=True)
            pipe.pttl(redis_key)
            count, _, ttl_ms = await pipe.execute()

        remaining_ms = int(ttl_ms) if ttl_ms is not None and int(ttl_ms) > 0 else window_ms
        return int(count), now_utc + timedelta(milliseconds=remaining_ms)

    async def aclose(self) -> None:
        await self._redis.aclose()
