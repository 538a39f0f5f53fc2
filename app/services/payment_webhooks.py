from __future__ import annotations

import secrets

PAYMENT_WEBHOOK_SECRET_HEADER = "X-Payment-Webhook-Secret"


def is_valid_webhook_secret(*, expected_secret: str, received_secret: str | None) -> bool:
    if not expected_secret or not received_secret:
        return False
    return secrets.compare_digest(expected_secret, received_secret)


def extract_provider_event_id(payload: object) -> str | None:
    if not isinstance(payload, dict):
        return None
    event_id = payload.get("id")
    if isinstance(event_id, str) and event_id.strip():
        return event_id.strip()
    return None
