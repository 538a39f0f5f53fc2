from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from app.billing.identity.errors import AccountNotFoundError
from app.billing.promo.errors import (
    PromoAlreadyRedeemedError,
    PromoDepletedError,
    PromoExpiredError,
    PromoInvalidError,
    PromoNotFoundError,
)
from app.billing.promo.service import PromoService
from app.billing.promo.types import ModificationType, PromoContext
from tests.billing.fakes import FakeBillingStore, FakeSession, make_account, make_promo_code

UTC = timezone.utc
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


class _LockRecorder(list):
    def __init__(self, sink: list[str], label: str) -> None:
        super().__init__()
        self._sink = sink
        self._label = label

    def append(self, item) -> None:
        self._sink.append(self._label)
        super().append(item)


@pytest.fixture
def store(monkeypatch) -> FakeBillingStore:
    billing_store = FakeBillingStore().install(monkeypatch)
    billing_store.add_promo_code(make_promo_code(code="PAPERCLIP", promo_id=1, free_months=1))
    billing_store.add_promo_code(
        make_promo_code(
            code="MIDNIGHT50",
            promo_id=2,
            kind="DISCOUNT_PERCENT",
            percent_off=50,
        )
    )
    return billing_store


@pytest.mark.asyncio
async def test_evaluate_is_case_insensitive_and_read_only(store: FakeBillingStore) -> None:
    result = await PromoService.evaluate(
        FakeSession(),
        code=" midnight-50 ",
        context=PromoContext(order_amount=7990),
        now_utc=NOW,
    )

    assert result.code == "MIDNIGHT50"
    assert result.modification.type == ModificationType.DISCOUNT
    assert result.modification.amount_off == 3995
    assert store.redemptions == []
    assert store.promo_codes[2].redeemed_total == 0


@pytest.mark.asyncio
async def test_evaluate_discount_with_zero_amount_is_noop(store: FakeBillingStore) -> None:
    result = await PromoService.evaluate(
        FakeSession(),
        code="MIDNIGHT50",
        context=PromoContext(order_amount=0),
        now_utc=NOW,
    )

    assert result.modification.amount_off == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("setup", "code", "expected_error"),
    [
        ("none", "   ", PromoInvalidError),
        ("none", "UNKNOWN", PromoNotFoundError),
        ("inactive", "PAPERCLIP", PromoNotFoundError),
        ("expired", "PAPERCLIP", PromoExpiredError),
        ("not_started", "PAPERCLIP", PromoExpiredError),
        ("depleted", "PAPERCLIP", PromoDepletedError),
    ],
)
async def test_evaluate_errors(store: FakeBillingStore, setup: str, code: str, expected_error) -> None:
    promo_code = store.promo_codes[1]
    if setup == "inactive":
        promo_code.active = False
    elif setup == "expired":
        promo_code.valid_until = NOW - timedelta(seconds=1)
    elif setup == "not_started":
        promo_code.valid_from = NOW + timedelta(days=1)
    elif setup == "depleted":
        promo_code.max_total_redemptions = 10
        promo_code.redeemed_total = 10

    with pytest.raises(expected_error):
        await PromoService.evaluate(FakeSession(), code=code, context=PromoContext(), now_utc=NOW)


def test_expired_and_depleted_are_not_found_variants() -> None:
    assert issubclass(PromoExpiredError, PromoNotFoundError)
    assert issubclass(PromoDepletedError, PromoNotFoundError)


@pytest.mark.asyncio
async def test_apply_with_account_grants_trial_months(store: FakeBillingStore) -> None:
    account = store.add_account(make_account())

    result = await PromoService.apply(
        FakeSession(),
        code="paperclip",
        context=PromoContext(account_id=account.id),
        now_utc=NOW,
    )

    assert result.applied is True
    assert result.idempotent_replay is False
    assert result.subscription_status == "PREMIUM"
    assert account.subscription_status == "PREMIUM"
    assert account.current_plan == "monthly"
    assert account.subscription_end_date == datetime(2026, 4, 10, 12, 0, tzinfo=UTC)
    assert store.promo_codes[1].redeemed_total == 1
    assert len(store.redemptions) == 1
    assert store.redemptions[0].account_id == account.id
    assert store.redemptions[0].status == "APPLIED"


@pytest.mark.asyncio
async def test_apply_locks_account_before_code(store: FakeBillingStore) -> None:
    account = store.add_account(make_account())
    lock_order: list[str] = []
    store.locked_account_ids = _LockRecorder(lock_order, "account")  # type: ignore[assignment]
    store.locked_promo_code_ids = _LockRecorder(lock_order, "code")  # type: ignore[assignment]

    await PromoService.apply(
        FakeSession(),
        code="PAPERCLIP",
        context=PromoContext(account_id=account.id),
        now_utc=NOW,
    )

    assert lock_order == ["account", "code"]


@pytest.mark.asyncio
async def test_apply_without_grant_records_redemption_only(store: FakeBillingStore) -> None:
    account = store.add_account(make_account())

    result = await PromoService.apply(
        FakeSession(),
        code="PAPERCLIP",
        context=PromoContext(account_id=account.id),
        now_utc=NOW,
        grant_subscription=False,
    )

    assert result.applied is True
    assert account.subscription_status == "FREE"
    assert account.subscription_end_date is None
    assert store.promo_codes[1].redeemed_total == 1


@pytest.mark.asyncio
async def test_apply_respects_per_account_cap(store: FakeBillingStore) -> None:
    account = store.add_account(make_account())
    session = FakeSession()
    await PromoService.apply(
        session,
        code="PAPERCLIP",
        context=PromoContext(account_id=account.id),
        now_utc=NOW,
    )

    with pytest.raises(PromoAlreadyRedeemedError):
        await PromoService.apply(
            session,
            code="PAPERCLIP",
            context=PromoContext(account_id=account.id),
            now_utc=NOW,
        )

    assert len(store.redemptions_for(promo_code_id=1)) == 1
    assert store.promo_codes[1].redeemed_total == 1


@pytest.mark.asyncio
async def test_apply_replays_by_idempotency_key(store: FakeBillingStore) -> None:
    account = store.add_account(make_account())
    session = FakeSession()
    first = await PromoService.apply(
        session,
        code="PAPERCLIP",
        context=PromoContext(account_id=account.id),
        now_utc=NOW,
        idempotency_key="checkout:abc",
    )

    second = await PromoService.apply(
        session,
        code="PAPERCLIP",
        context=PromoContext(account_id=account.id),
        now_utc=NOW + timedelta(minutes=1),
        idempotency_key="checkout:abc",
    )

    assert second.idempotent_replay is True
    assert second.redemption_id == first.redemption_id
    assert second.modification == first.modification
    assert second.subscription_status == "PREMIUM"
    assert len(store.redemptions) == 1


@pytest.mark.asyncio
async def test_apply_unknown_account_raises(store: FakeBillingStore) -> None:
    with pytest.raises(AccountNotFoundError):
        await PromoService.apply(
            FakeSession(),
            code="PAPERCLIP",
            context=PromoContext(account_id=uuid4()),
            now_utc=NOW,
        )


@pytest.mark.asyncio
async def test_apply_without_account_or_fingerprint_is_invalid(store: FakeBillingStore) -> None:
    with pytest.raises(PromoInvalidError):
        await PromoService.apply(FakeSession(), code="PAPERCLIP", context=PromoContext(), now_utc=NOW)


@pytest.mark.asyncio
async def test_apply_anonymous_records_single_pending_redemption(store: FakeBillingStore) -> None:
    session = FakeSession()
    context = PromoContext(fingerprint="fp-anon")

    first = await PromoService.apply(session, code="PAPERCLIP", context=context, now_utc=NOW)
    second = await PromoService.apply(session, code="PAPERCLIP", context=context, now_utc=NOW)

    assert first.pending is True
    assert first.account_id is None
    assert second.idempotent_replay is True
    assert second.redemption_id == first.redemption_id
    assert len(store.redemptions) == 1
    assert store.redemptions[0].idempotency_key == "pending:1:fp-anon"
    assert store.promo_codes[1].redeemed_total == 0


@pytest.mark.asyncio
async def test_evaluate_anonymous_rejects_fingerprint_with_pending_redemption(
    store: FakeBillingStore,
) -> None:
    context = PromoContext(fingerprint="fp-anon")
    await PromoService.apply(FakeSession(), code="PAPERCLIP", context=context, now_utc=NOW)

    with pytest.raises(PromoAlreadyRedeemedError):
        await PromoService.evaluate(FakeSession(), code="PAPERCLIP", context=context, now_utc=NOW)


@pytest.mark.asyncio
async def test_claim_pending_binds_redemption_and_grants_months(store: FakeBillingStore) -> None:
    session = FakeSession()
    await PromoService.apply(
        session,
        code="PAPERCLIP",
        context=PromoContext(fingerprint="fp-1"),
        now_utc=NOW,
    )
    account = store.add_account(make_account())

    claims = await PromoService.claim_pending(
        session,
        account=account,
        fingerprint="fp-1",
        now_utc=NOW,
    )
    again = await PromoService.claim_pending(
        session,
        account=account,
        fingerprint="fp-1",
        now_utc=NOW,
    )

    assert [claim.status for claim in claims] == ["APPLIED"]
    assert again == []
    assert store.redemptions[0].account_id == account.id
    assert store.redemptions[0].applied_at == NOW
    assert store.promo_codes[1].redeemed_total == 1
    assert account.subscription_status == "PREMIUM"
    assert account.subscription_end_date == datetime(2026, 4, 10, 12, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_claim_pending_rejects_when_account_at_cap(store: FakeBillingStore) -> None:
    session = FakeSession()
    account = store.add_account(make_account())
    await PromoService.apply(
        session,
        code="PAPERCLIP",
        context=PromoContext(account_id=account.id),
        now_utc=NOW,
    )
    await PromoService.apply(
        session,
        code="PAPERCLIP",
        context=PromoContext(fingerprint="fp-2"),
        now_utc=NOW,
    )
    end_before = account.subscription_end_date

    claims = await PromoService.claim_pending(
        session,
        account=account,
        fingerprint="fp-2",
        now_utc=NOW,
    )

    assert len(claims) == 1
    assert claims[0].status == "REJECTED"
    assert claims[0].reject_reason == "ALREADY_REDEEMED"
    assert account.subscription_end_date == end_before
    assert store.promo_codes[1].redeemed_total == 1


@pytest.mark.asyncio
async def test_claim_pending_rejects_depleted_code(store: FakeBillingStore) -> None:
    session = FakeSession()
    await PromoService.apply(
        session,
        code="PAPERCLIP",
        context=PromoContext(fingerprint="fp-3"),
        now_utc=NOW,
    )
    store.promo_codes[1].max_total_redemptions = 1
    store.promo_codes[1].redeemed_total = 1
    account = store.add_account(make_account())

    claims = await PromoService.claim_pending(
        session,
        account=account,
        fingerprint="fp-3",
        now_utc=NOW,
    )

    assert claims[0].reject_reason == "DEPLETED"
    assert account.subscription_status == "FREE"
