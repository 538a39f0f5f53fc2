from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy import text

from app.core.config import get_settings
from app.db.session import SessionLocal
from app.workers.celery_app import celery_app

router = APIRouter(tags=["health"])
logger = structlog.get_logger(__name__)

PROBE_TIMEOUT_SECONDS = 1.0

Probe = Callable[[], Awaitable[dict[str, Any]]]


def _passed(**details: Any) -> dict[str, Any]:
    return {"status": "ok", **details}


def _failed(error: str) -> dict[str, Any]:
    return {"status": "failed", "error": error}


async def _probe_redis(url: str, *, name: str) -> dict[str, Any]:
    client = Redis.from_url(
        url,
        socket_connect_timeout=PROBE_TIMEOUT_SECONDS,
        socket_timeout=PROBE_TIMEOUT_SECONDS,
    )
    try:
        if await client.ping() is not True:
            return _failed(f"{name}_unexpected_ping_response")
        return _passed()
    except Exception as exc:
        # Redis URLs can carry credentials; log the type only.
        logger.warning("health_redis_probe_failed", probe=name, error_type=type(exc).__name__)
        return _failed(f"{name}_unavailable")
    finally:
        await client.aclose()


async def _check_database() -> dict[str, Any]:
    try:
        async with SessionLocal() as session:
            await asyncio.wait_for(session.execute(text("SELECT 1")), timeout=PROBE_TIMEOUT_SECONDS)
    except Exception as exc:
        logger.warning("health_database_probe_failed", error_type=type(exc).__name__)
        return _failed("database_unavailable")
    return _passed()


async def _check_broker() -> dict[str, Any]:
    return await _probe_redis(get_settings().celery_broker_url, name="broker")


async def _check_rate_limit_store() -> dict[str, Any]:
    settings = get_settings()
    backend = settings.rate_limit_backend.strip().lower()
    if backend != "redis":
        return _passed(backend=backend)
    result = await _probe_redis(settings.redis_url, name="rate_limit_store")
    if result["status"] == "ok":
        result["backend"] = backend
    return result


def _inspect_payment_workers() -> dict[str, Any]:
    try:
        replies = celery_app.control.inspect(timeout=PROBE_TIMEOUT_SECONDS).ping() or {}
    except Exception as exc:
        logger.warning("health_workers_probe_failed", error_type=type(exc).__name__)
        return _failed("workers_unavailable")
    if not replies:
        return _failed("no_payment_workers")
    return _passed(workers=len(replies))


async def _check_payment_workers() -> dict[str, Any]:
    return await asyncio.to_thread(_inspect_payment_workers)


async def _run_probes(probes: dict[str, Probe]) -> tuple[bool, dict[str, dict[str, Any]]]:
    results = await asyncio.gather(*(probe() for probe in probes.values()))
    checks = dict(zip(probes, results))
    return all(check["status"] == "ok" for check in checks.values()), checks


@router.get("/health")
async def health() -> JSONResponse:
    healthy, checks = await _run_probes(
        {
            "database": _check_database,
            "broker": _check_broker,
            "rate_limit_store": _check_rate_limit_store,
            "workers": _check_payment_workers,
        }
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ok" if healthy else "degraded", "checks": checks},
    )


@router.get("/ready")
async def ready() -> JSONResponse:
    # Webhooks only need the ledger and the broker; queued events wait for workers.
    is_ready, checks = await _run_probes(
        {
            "database": _check_database,
            "broker": _check_broker,
            "rate_limit_store": _check_rate_limit_store,
        }
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if is_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if is_ready else "not_ready", "checks": checks},
    )


@router.get("/live")
async def live() -> dict[str, str]:
    return {"status": "live"}
