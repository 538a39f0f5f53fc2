from celery import Celery

from app.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "premium_billing",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "app.workers.tasks.payment_events",
    ],
)

celery_app.conf.update(
    task_default_queue="q_payments",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
)
