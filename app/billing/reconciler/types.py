from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID


class PaymentEventKind(str, Enum):
    CHECKOUT_COMPLETED = "CHECKOUT_COMPLETED"
    SUBSCRIPTION_CREATED = "SUBSCRIPTION_CREATED"
    SUBSCRIPTION_UPDATED = "SUBSCRIPTION_UPDATED"


def _parse_datetime(value: object) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(str(value))


@dataclass(frozen=True, slots=True)
class PaymentEvent:
    event_id: str
    event_kind: PaymentEventKind
    received_at: datetime
    account_id_hint: UUID | None = None
    email_hint: str | None = None
    provider_customer_ref: str | None = None
    provider_subscription_ref: str | None = None
    plan_label: str | None = None
    promo_code: str | None = None
    subscription_status: str | None = None
    period_end: datetime | None = None
    cancel_at_period_end: bool | None = None
    order_amount: int = 0
    fingerprint: str | None = None

    def to_payload(self) -> dict[str, object]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "received_at": self.received_at.isoformat(),
            "account_id_hint": str(self.account_id_hint) if self.account_id_hint else None,
            "email_hint": self.email_hint,
            "provider_customer_ref": self.provider_customer_ref,
            "provider_subscription_ref": self.provider_subscription_ref,
            "plan_label": self.plan_label,
            "promo_code": self.promo_code,
            "subscription_status": self.subscription_status,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "cancel_at_period_end": self.cancel_at_period_end,
            "order_amount": self.order_amount,
            "fingerprint": self.fingerprint,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, object]) -> PaymentEvent:
        received_at = _parse_datetime(payload["received_at"])
        if received_at is None:
            raise ValueError("payment event payload has no received_at")
        account_id_hint = payload.get("account_id_hint")
        cancel_at_period_end = payload.get("cancel_at_period_end")
        return cls(
            event_id=str(payload["event_id"]),
            event_kind=PaymentEventKind(str(payload["event_kind"])),
            received_at=received_at,
            account_id_hint=UUID(str(account_id_hint)) if account_id_hint else None,
            email_hint=payload.get("email_hint"),  # type: ignore[arg-type]
            provider_customer_ref=payload.get("provider_customer_ref"),  # type: ignore[arg-type]
            provider_subscription_ref=payload.get("provider_subscription_ref"),  # type: ignore[arg-type]
            plan_label=payload.get("plan_label"),  # type: ignore[arg-type]
            promo_code=payload.get("promo_code"),  # type: ignore[arg-type]
            subscription_status=payload.get("subscription_status"),  # type: ignore[arg-type]
            period_end=_parse_datetime(payload.get("period_end")),
            cancel_at_period_end=(
                bool(cancel_at_period_end) if cancel_at_period_end is not None else None
            ),
            order_amount=int(payload.get("order_amount") or 0),  # type: ignore[arg-type]
            fingerprint=payload.get("fingerprint"),  # type: ignore[arg-type]
        )


@dataclass(frozen=True, slots=True)
class SubscriptionState:
    subscription_status: str
    current_plan: str | None
    subscription_end_date: datetime | None
    cancel_at_period_end: bool


@dataclass(frozen=True, slots=True)
class TransitionDecision:
    state: SubscriptionState
    stale: bool
    expired_by_guard: bool = False


@dataclass(slots=True)
class ReconcileResult:
    event_id: str
    status: str
    idempotent_replay: bool
    account_id: UUID | None = None
    failure_reason: str | None = None
    outcome: dict[str, object] = field(default_factory=dict)
