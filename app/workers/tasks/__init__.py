from app.workers.tasks.payment_events import process_payment_event

__all__ = [
    "process_payment_event",
]
