from __future__ import annotations

import calendar
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from app.billing.promo.constants import PROMO_KIND_DISCOUNT_PERCENT, PROMO_KIND_FREE_SUBSCRIPTION
from app.billing.promo.errors import PromoInvalidError
from app.billing.promo.types import Modification, ModificationType


def discount_amount_off(*, order_amount: int, percent_off: int) -> int:
    """Discount in minor units, rounded half away from zero."""
    if order_amount < 0:
        raise ValueError("order_amount must be non-negative")
    if order_amount == 0:
        return 0
    exact = Decimal(order_amount) * Decimal(percent_off) / Decimal(100)
    return int(exact.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def add_calendar_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def extend_subscription_end(
    *,
    current_end: datetime | None,
    now_utc: datetime,
    months: int,
) -> datetime:
    base = current_end if current_end is not None and current_end > now_utc else now_utc
    return add_calendar_months(base, months)


def is_within_validity_window(
    *,
    valid_from: datetime | None,
    valid_until: datetime | None,
    now_utc: datetime,
) -> bool:
    if valid_from is not None and now_utc < valid_from:
        return False
    if valid_until is not None and now_utc > valid_until:
        return False
    return True


def build_modification(
    *,
    kind: str,
    free_months: int | None,
    percent_off: int | None,
    order_amount: int,
) -> Modification:
    if kind == PROMO_KIND_FREE_SUBSCRIPTION and free_months is not None:
        return Modification(type=ModificationType.TRIAL_EXTENSION, months=free_months)
    if kind == PROMO_KIND_DISCOUNT_PERCENT and percent_off is not None:
        return Modification(
            type=ModificationType.DISCOUNT,
            percent_off=percent_off,
            amount_off=discount_amount_off(order_amount=order_amount, percent_off=percent_off),
        )
    raise PromoInvalidError


def pending_idempotency_key(*, promo_code_id: int, fingerprint: str) -> str:
    return f"pending:{promo_code_id}:{fingerprint}"
