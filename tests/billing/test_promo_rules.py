from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.billing.promo.errors import PromoInvalidError
from app.billing.promo.rules import (
    add_calendar_months,
    build_modification,
    discount_amount_off,
    extend_subscription_end,
    is_within_validity_window,
    pending_idempotency_key,
)
from app.billing.promo.types import Modification, ModificationType

UTC = timezone.utc


@pytest.mark.parametrize(
    ("order_amount", "percent_off", "expected"),
    [
        (7990, 50, 3995),
        (999, 33, 330),
        (1, 50, 1),
        (3, 50, 2),
        (1000, 100, 1000),
        (0, 50, 0),
    ],
)
def test_discount_amount_off_rounds_half_up(order_amount: int, percent_off: int, expected: int) -> None:
    assert discount_amount_off(order_amount=order_amount, percent_off=percent_off) == expected


def test_discount_amount_off_rejects_negative_amount() -> None:
    with pytest.raises(ValueError):
        discount_amount_off(order_amount=-1, percent_off=10)


def test_add_calendar_months_clamps_to_end_of_month() -> None:
    assert add_calendar_months(datetime(2026, 1, 31, 9, 0, tzinfo=UTC), 1) == datetime(
        2026, 2, 28, 9, 0, tzinfo=UTC
    )
    assert add_calendar_months(datetime(2028, 1, 31, tzinfo=UTC), 1) == datetime(
        2028, 2, 29, tzinfo=UTC
    )
    assert add_calendar_months(datetime(2026, 11, 15, tzinfo=UTC), 3) == datetime(
        2027, 2, 15, tzinfo=UTC
    )


def test_extend_subscription_end_stacks_on_future_end_only() -> None:
    now_utc = datetime(2026, 3, 10, tzinfo=UTC)
    future_end = datetime(2026, 4, 20, tzinfo=UTC)
    past_end = datetime(2026, 1, 1, tzinfo=UTC)

    assert extend_subscription_end(current_end=future_end, now_utc=now_utc, months=1) == datetime(
        2026, 5, 20, tzinfo=UTC
    )
    assert extend_subscription_end(current_end=past_end, now_utc=now_utc, months=1) == datetime(
        2026, 4, 10, tzinfo=UTC
    )
    assert extend_subscription_end(current_end=None, now_utc=now_utc, months=2) == datetime(
        2026, 5, 10, tzinfo=UTC
    )


def test_validity_window_is_inclusive() -> None:
    start = datetime(2026, 1, 1, tzinfo=UTC)
    end = datetime(2026, 12, 31, tzinfo=UTC)

    assert is_within_validity_window(valid_from=start, valid_until=end, now_utc=start)
    assert is_within_validity_window(valid_from=start, valid_until=end, now_utc=end)
    assert is_within_validity_window(valid_from=None, valid_until=None, now_utc=end)
    assert not is_within_validity_window(
        valid_from=start,
        valid_until=end,
        now_utc=datetime(2027, 1, 1, tzinfo=UTC),
    )
    assert not is_within_validity_window(
        valid_from=start,
        valid_until=None,
        now_utc=datetime(2025, 12, 31, tzinfo=UTC),
    )


def test_build_modification_for_each_kind() -> None:
    trial = build_modification(
        kind="FREE_SUBSCRIPTION",
        free_months=3,
        percent_off=None,
        order_amount=7990,
    )
    discount = build_modification(
        kind="DISCOUNT_PERCENT",
        free_months=None,
        percent_off=50,
        order_amount=7990,
    )

    assert trial == Modification(type=ModificationType.TRIAL_EXTENSION, months=3)
    assert discount == Modification(type=ModificationType.DISCOUNT, percent_off=50, amount_off=3995)
    assert trial.to_dict() == {"type": "trial_extension", "months": 3}
    assert Modification.from_dict(discount.to_dict()) == discount


def test_build_modification_rejects_kind_payload_mismatch() -> None:
    with pytest.raises(PromoInvalidError):
        build_modification(
            kind="DISCOUNT_PERCENT",
            free_months=1,
            percent_off=None,
            order_amount=100,
        )


def test_pending_idempotency_key_format() -> None:
    assert pending_idempotency_key(promo_code_id=7, fingerprint="fp-1") == "pending:7:fp-1"
