from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from app.billing.reconciler.errors import MalformedPaymentEventError
from app.billing.reconciler.normalization import normalize_provider_event
from app.billing.reconciler.types import PaymentEvent
from app.core.config import get_settings
from app.services.payment_webhooks import (
    PAYMENT_WEBHOOK_SECRET_HEADER,
    extract_provider_event_id,
    is_valid_webhook_secret,
)
from app.workers.tasks.payment_events import process_payment_event

router = APIRouter(tags=["payments"])
logger = structlog.get_logger(__name__)


def _is_celery_task(task_obj: object) -> bool:
    return type(task_obj).__module__.startswith("celery.")


def _ignored() -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ignored"})


async def _enqueue_event(*, event: PaymentEvent, timeout_seconds: float) -> bool:
    event_payload = event.to_payload()

    def enqueue_call() -> object:
        return process_payment_event.delay(event_payload=event_payload)

    try:
        if _is_celery_task(process_payment_event):
            await asyncio.wait_for(asyncio.to_thread(enqueue_call), timeout=timeout_seconds)
        else:
            enqueue_call()
        return True
    except asyncio.TimeoutError:
        logger.warning(
            "payment_webhook_enqueue_timeout",
            event_id=event.event_id,
            enqueue_timeout_seconds=timeout_seconds,
        )
        return False
    except Exception as exc:
        logger.warning(
            "payment_webhook_enqueue_failed",
            event_id=event.event_id,
            error_type=type(exc).__name__,
        )
        return False


@router.post("/webhook/payments")
async def payment_webhook(request: Request) -> JSONResponse:
    settings = get_settings()
    if not is_valid_webhook_secret(
        expected_secret=settings.payment_webhook_secret,
        received_secret=request.headers.get(PAYMENT_WEBHOOK_SECRET_HEADER),
    ):
        logger.warning("payment_webhook_invalid_secret")
        return _ignored()

    try:
        envelope = await request.json()
    except Exception:
        logger.warning("payment_webhook_invalid_json")
        return _ignored()

    try:
        event = normalize_provider_event(envelope)
    except MalformedPaymentEventError as exc:
        logger.warning(
            "payment_webhook_malformed_event",
            event_id=extract_provider_event_id(envelope),
            error=str(exc),
        )
        return _ignored()
    if event is None:
        logger.info(
            "payment_webhook_unsupported_event",
            event_id=extract_provider_event_id(envelope),
            event_type=envelope.get("type") if isinstance(envelope, dict) else None,
        )
        return _ignored()

    enqueue_timeout_ms = max(1, int(settings.payment_webhook_enqueue_timeout_ms))
    enqueued = await _enqueue_event(event=event, timeout_seconds=enqueue_timeout_ms / 1000.0)
    if not enqueued:
        # The provider redelivers on non-2xx, so a lost enqueue must not be acknowledged.
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "retry"},
        )

    logger.info(
        "payment_webhook_queued",
        event_id=event.event_id,
        event_kind=event.event_kind.value,
    )
    return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "queued"})
