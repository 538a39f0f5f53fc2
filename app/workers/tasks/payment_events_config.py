from __future__ import annotations

from app.core.config import get_settings

settings = get_settings()

TASK_MAX_RETRIES = max(0, int(settings.payment_event_task_max_retries))
TASK_RETRY_BACKOFF_MAX_SECONDS = max(
    1, int(settings.payment_event_task_retry_backoff_max_seconds)
)
DEADLINE_SECONDS = max(0.1, float(settings.payment_event_deadline_seconds))
RETRY_JITTER_RATIO = 0.25

RESULT_IGNORED = "ignored"
RESULT_UNPROCESSED = "unprocessed"

__all__ = [
    "DEADLINE_SECONDS",
    "RESULT_IGNORED",
    "RESULT_UNPROCESSED",
    "RETRY_JITTER_RATIO",
    "TASK_MAX_RETRIES",
    "TASK_RETRY_BACKOFF_MAX_SECONDS",
]
