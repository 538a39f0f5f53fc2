from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.billing.reconciler.constants import (
    PLAN_ANNUAL,
    PLAN_MONTHLY,
    PROVIDER_EVENT_CHECKOUT_COMPLETED,
    PROVIDER_EVENT_SUBSCRIPTION_CREATED,
    PROVIDER_EVENT_SUBSCRIPTION_DELETED,
    PROVIDER_EVENT_SUBSCRIPTION_UPDATED,
)
from app.billing.reconciler.errors import MalformedPaymentEventError
from app.billing.reconciler.types import PaymentEvent, PaymentEventKind
from app.services.promo_codes import normalize_promo_code

logger = structlog.get_logger(__name__)

SUPPORTED_PROVIDER_EVENT_TYPES = frozenset(
    {
        PROVIDER_EVENT_CHECKOUT_COMPLETED,
        PROVIDER_EVENT_SUBSCRIPTION_CREATED,
        PROVIDER_EVENT_SUBSCRIPTION_UPDATED,
        PROVIDER_EVENT_SUBSCRIPTION_DELETED,
    }
)


class _EnvelopeData(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    object_: dict[str, Any] = Field(alias="object")


class _ProviderEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1, max_length=128)
    type: str = Field(min_length=1)
    created: int | None = Field(default=None, ge=0)
    data: _EnvelopeData


class _CustomerDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str | None = None


class _CheckoutSession(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    customer: str | None = None
    subscription: str | None = None
    customer_email: str | None = None
    customer_details: _CustomerDetails | None = None
    client_reference_id: str | None = None
    amount_subtotal: int | None = Field(default=None, ge=0)
    metadata: dict[str, str | None] = Field(default_factory=dict)


class _Recurring(BaseModel):
    model_config = ConfigDict(extra="ignore")

    interval: str | None = None


class _Price(BaseModel):
    model_config = ConfigDict(extra="ignore")

    recurring: _Recurring | None = None
    unit_amount: int | None = Field(default=None, ge=0)


class _SubscriptionItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    price: _Price | None = None
    current_period_end: int | None = Field(default=None, ge=0)


class _SubscriptionItems(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: list[_SubscriptionItem] = Field(default_factory=list)


class _Subscription(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    customer: str | None = None
    status: str = Field(min_length=1)
    current_period_end: int | None = Field(default=None, ge=0)
    cancel_at_period_end: bool = False
    items: _SubscriptionItems | None = None
    metadata: dict[str, str | None] = Field(default_factory=dict)


def plan_label_for_interval(interval: str | None) -> str:
    return PLAN_ANNUAL if interval == "year" else PLAN_MONTHLY


def _from_epoch(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def _parse_account_hint(*candidates: str | None) -> UUID | None:
    for candidate in candidates:
        cleaned = _clean(candidate)
        if cleaned is None:
            continue
        try:
            return UUID(cleaned)
        except ValueError:
            continue
    return None


def _metadata_plan(metadata: dict[str, str | None]) -> str | None:
    raw_plan = _clean(metadata.get("plan")) or _clean(metadata.get("billing_period"))
    if raw_plan is None:
        return None
    lowered = raw_plan.lower()
    if lowered in {PLAN_ANNUAL, "year", "yearly"}:
        return PLAN_ANNUAL
    return PLAN_MONTHLY


def _metadata_promo_code(metadata: dict[str, str | None]) -> str | None:
    normalized = normalize_promo_code(metadata.get("promo_code"))
    return normalized or None


def _normalize_checkout(envelope: _ProviderEnvelope, *, received_at: datetime) -> PaymentEvent:
    checkout = _CheckoutSession.model_validate(envelope.data.object_)
    metadata = checkout.metadata
    email = _clean(checkout.customer_email) or _clean(
        checkout.customer_details.email if checkout.customer_details is not None else None
    )
    return PaymentEvent(
        event_id=envelope.id,
        event_kind=PaymentEventKind.CHECKOUT_COMPLETED,
        received_at=received_at,
        account_id_hint=_parse_account_hint(
            checkout.client_reference_id,
            metadata.get("account_id"),
            metadata.get("user_id"),
        ),
        email_hint=email,
        provider_customer_ref=_clean(checkout.customer),
        provider_subscription_ref=_clean(checkout.subscription),
        plan_label=_metadata_plan(metadata) or PLAN_MONTHLY,
        promo_code=_metadata_promo_code(metadata),
        subscription_status=None,
        period_end=None,
        cancel_at_period_end=None,
        order_amount=checkout.amount_subtotal or 0,
        fingerprint=_clean(metadata.get("fingerprint_hash")) or _clean(metadata.get("fingerprint")),
    )


def _normalize_subscription(
    envelope: _ProviderEnvelope,
    *,
    received_at: datetime,
) -> PaymentEvent:
    subscription = _Subscription.model_validate(envelope.data.object_)
    metadata = subscription.metadata
    first_item = subscription.items.data[0] if subscription.items and subscription.items.data else None
    interval = None
    if first_item is not None and first_item.price is not None and first_item.price.recurring is not None:
        interval = first_item.price.recurring.interval
    period_end = subscription.current_period_end
    if period_end is None and first_item is not None:
        period_end = first_item.current_period_end

    if envelope.type == PROVIDER_EVENT_SUBSCRIPTION_DELETED:
        event_kind = PaymentEventKind.SUBSCRIPTION_UPDATED
        provider_status = "canceled"
    elif envelope.type == PROVIDER_EVENT_SUBSCRIPTION_CREATED:
        event_kind = PaymentEventKind.SUBSCRIPTION_CREATED
        provider_status = subscription.status.lower()
    else:
        event_kind = PaymentEventKind.SUBSCRIPTION_UPDATED
        provider_status = subscription.status.lower()

    return PaymentEvent(
        event_id=envelope.id,
        event_kind=event_kind,
        received_at=received_at,
        account_id_hint=_parse_account_hint(metadata.get("account_id"), metadata.get("user_id")),
        email_hint=None,
        provider_customer_ref=_clean(subscription.customer),
        provider_subscription_ref=subscription.id,
        plan_label=_metadata_plan(metadata) or plan_label_for_interval(interval),
        promo_code=_metadata_promo_code(metadata),
        subscription_status=provider_status,
        period_end=_from_epoch(period_end),
        cancel_at_period_end=subscription.cancel_at_period_end,
        order_amount=0,
        fingerprint=_clean(metadata.get("fingerprint_hash")) or _clean(metadata.get("fingerprint")),
    )


def normalize_provider_event(
    envelope: object,
    *,
    now_utc: datetime | None = None,
) -> PaymentEvent | None:
    """Convert a raw provider webhook body into a ``PaymentEvent``.

    Returns ``None`` for event types the reconciler does not handle. Raises
    ``MalformedPaymentEventError`` when a handled type is missing required
    fields or carries values of the wrong shape.
    """
    if not isinstance(envelope, dict):
        raise MalformedPaymentEventError("envelope must be a JSON object")

    event_type = envelope.get("type")
    if event_type not in SUPPORTED_PROVIDER_EVENT_TYPES:
        logger.debug("payment_event_type_unsupported", event_type=event_type)
        return None

    try:
        parsed = _ProviderEnvelope.model_validate(envelope)
        received_at = _from_epoch(parsed.created) or now_utc or datetime.now(timezone.utc)
        if parsed.type == PROVIDER_EVENT_CHECKOUT_COMPLETED:
            event = _normalize_checkout(parsed, received_at=received_at)
        else:
            event = _normalize_subscription(parsed, received_at=received_at)
    except ValidationError as exc:
        raise MalformedPaymentEventError(str(exc)) from exc

    if (
        event.provider_customer_ref is None
        and event.account_id_hint is None
        and event.email_hint is None
    ):
        raise MalformedPaymentEventError("event carries no identity hint")
    return event
