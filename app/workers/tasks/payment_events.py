from __future__ import annotations

import asyncio
import random

import structlog
from celery import Task

from app.billing.reconciler.errors import StoreUnavailableError
from app.billing.reconciler.service import reconcile_payment_event
from app.billing.reconciler.types import PaymentEvent, ReconcileResult
from app.workers.asyncio_runner import run_async_job
from app.workers.celery_app import celery_app
from app.workers.tasks.payment_events_config import (
    DEADLINE_SECONDS,
    RESULT_IGNORED,
    RESULT_UNPROCESSED,
    RETRY_JITTER_RATIO,
    TASK_MAX_RETRIES,
    TASK_RETRY_BACKOFF_MAX_SECONDS,
)

logger = structlog.get_logger(__name__)


def _retry_backoff_seconds(
    *,
    next_retry_attempt: int,
    backoff_max_seconds: int,
) -> int:
    safe_retry_attempt = max(1, int(next_retry_attempt))
    safe_backoff_max_seconds = max(1, int(backoff_max_seconds))

    base_delay = min(safe_backoff_max_seconds, 2 ** (safe_retry_attempt - 1))
    max_jitter = max(0, int(base_delay * RETRY_JITTER_RATIO))
    jitter = random.randint(0, max_jitter) if max_jitter > 0 else 0
    return min(safe_backoff_max_seconds, base_delay + jitter)


async def reconcile_payment_event_async(
    event: PaymentEvent,
    *,
    deadline_seconds: float = DEADLINE_SECONDS,
) -> ReconcileResult:
    # On timeout the transaction is rolled back and the ledger has no row for the event.
    return await asyncio.wait_for(reconcile_payment_event(event), timeout=deadline_seconds)


@celery_app.task(
    name="app.workers.tasks.payment_events.process_payment_event",
    bind=True,
    max_retries=TASK_MAX_RETRIES,
    acks_late=True,
    reject_on_worker_lost=True,
)
def process_payment_event(self: Task, event_payload: dict[str, object]) -> str:
    try:
        event = PaymentEvent.from_payload(event_payload)
    except (KeyError, TypeError, ValueError):
        logger.warning("payment_event_payload_invalid", payload=event_payload)
        return RESULT_IGNORED

    task_id = str(self.request.id) if self.request.id is not None else None
    try:
        result = run_async_job(
            reconcile_payment_event_async(event),
            job_name="process_payment_event",
        )
    except (StoreUnavailableError, asyncio.TimeoutError) as exc:
        current_retries = max(0, int(getattr(self.request, "retries", 0) or 0))
        if current_retries >= TASK_MAX_RETRIES:
            logger.error(
                "payment_event_failed_final",
                event_id=event.event_id,
                task_id=task_id,
                retries=current_retries,
                max_retries=TASK_MAX_RETRIES,
                error_type=type(exc).__name__,
            )
            return RESULT_UNPROCESSED

        next_retry_attempt = current_retries + 1
        retry_in_seconds = _retry_backoff_seconds(
            next_retry_attempt=next_retry_attempt,
            backoff_max_seconds=TASK_RETRY_BACKOFF_MAX_SECONDS,
        )
        logger.warning(
            "payment_event_retry_scheduled",
            event_id=event.event_id,
            task_id=task_id,
            retry_attempt=next_retry_attempt,
            retry_in_seconds=retry_in_seconds,
            max_retries=TASK_MAX_RETRIES,
            error_type=type(exc).__name__,
        )
        raise self.retry(
            exc=exc,
            countdown=retry_in_seconds,
            max_retries=TASK_MAX_RETRIES,
        )

    return result.status
