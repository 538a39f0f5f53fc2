from __future__ import annotations

from datetime import datetime

from app.billing.reconciler.constants import (
    SUBSCRIPTION_STATUS_FREE,
    SUBSCRIPTION_STATUS_PREMIUM,
    TERMINAL_PROVIDER_STATUSES,
)
from app.billing.reconciler.types import (
    PaymentEvent,
    PaymentEventKind,
    SubscriptionState,
    TransitionDecision,
)


def is_stale_event(*, event_received_at: datetime, last_event_at: datetime | None) -> bool:
    return last_event_at is not None and event_received_at < last_event_at


def apply_expiry_guard(
    state: SubscriptionState,
    *,
    now_utc: datetime,
) -> tuple[SubscriptionState, bool]:
    if (
        state.subscription_status == SUBSCRIPTION_STATUS_PREMIUM
        and state.subscription_end_date is not None
        and state.subscription_end_date <= now_utc
    ):
        return (
            SubscriptionState(
                subscription_status=SUBSCRIPTION_STATUS_FREE,
                current_plan=None,
                subscription_end_date=state.subscription_end_date,
                cancel_at_period_end=False,
            ),
            True,
        )
    return state, False


def _future_or_none(value: datetime | None, *, now_utc: datetime) -> datetime | None:
    if value is not None and value > now_utc:
        return value
    return None


def _checkout_completed(
    current: SubscriptionState,
    event: PaymentEvent,
    *,
    now_utc: datetime,
) -> SubscriptionState:
    end_date = event.period_end or _future_or_none(current.subscription_end_date, now_utc=now_utc)
    return SubscriptionState(
        subscription_status=SUBSCRIPTION_STATUS_PREMIUM,
        current_plan=event.plan_label or current.current_plan,
        subscription_end_date=end_date,
        cancel_at_period_end=(
            event.cancel_at_period_end
            if event.cancel_at_period_end is not None
            else current.cancel_at_period_end
        ),
    )


def _subscription_terminated() -> SubscriptionState:
    return SubscriptionState(
        subscription_status=SUBSCRIPTION_STATUS_FREE,
        current_plan=None,
        subscription_end_date=None,
        cancel_at_period_end=False,
    )


def _subscription_changed(
    current: SubscriptionState,
    event: PaymentEvent,
    *,
    now_utc: datetime,
) -> SubscriptionState:
    if event.subscription_status in TERMINAL_PROVIDER_STATUSES:
        return _subscription_terminated()
    return SubscriptionState(
        subscription_status=SUBSCRIPTION_STATUS_PREMIUM,
        current_plan=event.plan_label or current.current_plan,
        subscription_end_date=(
            event.period_end or _future_or_none(current.subscription_end_date, now_utc=now_utc)
        ),
        cancel_at_period_end=bool(event.cancel_at_period_end),
    )


def _backfill_missing(
    current: SubscriptionState,
    event: PaymentEvent,
    *,
    now_utc: datetime,
) -> SubscriptionState:
    if current.subscription_status != SUBSCRIPTION_STATUS_PREMIUM:
        return current
    return SubscriptionState(
        subscription_status=current.subscription_status,
        current_plan=current.current_plan or event.plan_label,
        subscription_end_date=(
            current.subscription_end_date
            or _future_or_none(event.period_end, now_utc=now_utc)
        ),
        cancel_at_period_end=current.cancel_at_period_end,
    )


_TRANSITIONS = {
    PaymentEventKind.CHECKOUT_COMPLETED: _checkout_completed,
    PaymentEventKind.SUBSCRIPTION_CREATED: _subscription_changed,
    PaymentEventKind.SUBSCRIPTION_UPDATED: _subscription_changed,
}


def decide_transition(
    current: SubscriptionState,
    *,
    last_event_at: datetime | None,
    event: PaymentEvent,
    now_utc: datetime,
) -> TransitionDecision:
    """Next subscription state as a pure function of stored state, event and clock.

    A stale event (older than the last applied one) never changes status; it
    only fills a plan or end date the current premium state is missing.
    """
    stale = is_stale_event(event_received_at=event.received_at, last_event_at=last_event_at)
    if stale:
        proposed = _backfill_missing(current, event, now_utc=now_utc)
    else:
        proposed = _TRANSITIONS[event.event_kind](current, event, now_utc=now_utc)
    guarded, expired_by_guard = apply_expiry_guard(proposed, now_utc=now_utc)
    return TransitionDecision(state=guarded, stale=stale, expired_by_guard=expired_by_guard)


def next_event_watermark(*, last_event_at: datetime | None, event_received_at: datetime) -> datetime:
    if last_event_at is None or event_received_at > last_event_at:
        return event_received_at
    return last_event_at
