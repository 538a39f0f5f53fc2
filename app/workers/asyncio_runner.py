from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar

import structlog

from app.billing.rate_limit.limiter import dispose_rate_limiter
from app.db.session import dispose_engine

T = TypeVar("T")

logger = structlog.get_logger(__name__)


async def _release_loop_bound_clients() -> None:
    # Pooled asyncpg and redis connections are bound to the loop that opened them.
    await dispose_engine()
    await dispose_rate_limiter()


async def _run_with_fresh_db_pool(awaitable: Awaitable[T], *, job_name: str) -> T:
    await _release_loop_bound_clients()
    started_at = time.monotonic()
    try:
        return await awaitable
    finally:
        await _release_loop_bound_clients()
        logger.debug(
            "async_job_finished",
            job_name=job_name,
            duration_ms=int((time.monotonic() - started_at) * 1000),
        )


def run_async_job(awaitable: Awaitable[T], *, job_name: str = "async_job") -> T:
    return asyncio.run(_run_with_fresh_db_pool(awaitable, job_name=job_name))
