from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from app.billing.identity.resolver import IdentityResolver
from app.billing.reconciler.service import reconcile_payment_event, replay_failed_payment_event
from app.billing.reconciler.types import PaymentEvent, PaymentEventKind
from app.db.models.accounts import Account
from app.db.models.processed_payment_events import ProcessedPaymentEvent
from app.db.models.promo_redemptions import PromoRedemption
from app.db.session import SessionLocal
from tests.integration.billing_fixtures import create_account, create_promo_code

UTC = timezone.utc


async def _count(model, *conditions) -> int:
    async with SessionLocal.begin() as session:
        stmt = select(func.count()).select_from(model)
        for condition in conditions:
            stmt = stmt.where(condition)
        return int(await session.scalar(stmt) or 0)


@pytest.mark.asyncio
async def test_paperclip_checkout_applies_once_under_duplicate_delivery() -> None:
    now_utc = datetime.now(UTC)
    account_id = await create_account(email="paperclip@example.com", now_utc=now_utc)
    promo_code_id = await create_promo_code(code="PAPERCLIP", now_utc=now_utc)
    event = PaymentEvent(
        event_id="evt_paperclip_1",
        event_kind=PaymentEventKind.CHECKOUT_COMPLETED,
        received_at=now_utc,
        account_id_hint=account_id,
        provider_customer_ref="cus_paperclip",
        plan_label="monthly",
        promo_code="PAPERCLIP",
    )

    results = await asyncio.gather(*(reconcile_payment_event(event) for _ in range(4)))

    assert sorted(result.status for result in results) == ["duplicate", "duplicate", "duplicate", "processed"]
    async with SessionLocal.begin() as session:
        account = await session.get(Account, account_id)
        assert account is not None
        assert account.subscription_status == "PREMIUM"
        assert account.current_plan == "monthly"
        assert account.provider_customer_ref == "cus_paperclip"
    assert await _count(PromoRedemption, PromoRedemption.promo_code_id == promo_code_id) == 1
    assert await _count(ProcessedPaymentEvent) == 1


@pytest.mark.asyncio
async def test_unresolvable_email_is_recorded_failed_and_replayable() -> None:
    now_utc = datetime.now(UTC)
    event = PaymentEvent(
        event_id="evt_missing_email",
        event_kind=PaymentEventKind.CHECKOUT_COMPLETED,
        received_at=now_utc,
        email_hint="missing@example.com",
        plan_label="annual",
    )

    failed = await reconcile_payment_event(event)

    assert failed.status == "failed"
    assert failed.failure_reason == "ACCOUNT_NOT_FOUND"
    assert await _count(Account) == 0
    async with SessionLocal.begin() as session:
        row = await session.get(ProcessedPaymentEvent, "evt_missing_email")
        assert row is not None
        assert row.status == "FAILED"

    account_id = await create_account(email="Missing@Example.com", now_utc=now_utc)
    replayed = await replay_failed_payment_event("evt_missing_email")

    assert replayed.status == "processed"
    assert replayed.account_id == account_id
    async with SessionLocal.begin() as session:
        account = await session.get(Account, account_id)
        assert account is not None
        assert account.subscription_status == "PREMIUM"
        assert account.current_plan == "annual"


@pytest.mark.asyncio
async def test_concurrent_events_for_one_account_converge() -> None:
    now_utc = datetime.now(UTC)
    account_id = await create_account(email="converge@example.com", now_utc=now_utc)
    period_end = now_utc + timedelta(days=30)
    checkout = PaymentEvent(
        event_id="evt_converge_checkout",
        event_kind=PaymentEventKind.CHECKOUT_COMPLETED,
        received_at=now_utc - timedelta(seconds=2),
        account_id_hint=account_id,
        provider_customer_ref="cus_converge",
        plan_label="monthly",
    )
    created = PaymentEvent(
        event_id="evt_converge_created",
        event_kind=PaymentEventKind.SUBSCRIPTION_CREATED,
        received_at=now_utc - timedelta(seconds=1),
        provider_customer_ref="cus_converge",
        account_id_hint=account_id,
        provider_subscription_ref="sub_converge",
        plan_label="monthly",
        subscription_status="active",
        period_end=period_end,
    )

    await asyncio.gather(reconcile_payment_event(created), reconcile_payment_event(checkout))

    async with SessionLocal.begin() as session:
        account = await session.get(Account, account_id)
        assert account is not None
        assert account.subscription_status == "PREMIUM"
        assert account.subscription_end_date == period_end
        assert account.provider_subscription_ref == "sub_converge"
        assert account.subscription_event_at == created.received_at


@pytest.mark.asyncio
async def test_cancellation_committed_before_lock_wins_over_older_checkout(monkeypatch) -> None:
    now_utc = datetime.now(UTC)
    account_id = await create_account(email="late-checkout@example.com", now_utc=now_utc)
    await reconcile_payment_event(
        PaymentEvent(
            event_id="evt_late_created",
            event_kind=PaymentEventKind.SUBSCRIPTION_CREATED,
            received_at=now_utc - timedelta(minutes=3),
            account_id_hint=account_id,
            provider_customer_ref="cus_late",
            provider_subscription_ref="sub_late",
            plan_label="monthly",
            subscription_status="active",
            period_end=now_utc + timedelta(days=30),
        )
    )
    cancellation = PaymentEvent(
        event_id="evt_late_canceled",
        event_kind=PaymentEventKind.SUBSCRIPTION_UPDATED,
        received_at=now_utc - timedelta(minutes=1),
        provider_customer_ref="cus_late",
        provider_subscription_ref="sub_late",
        subscription_status="canceled",
    )
    late_checkout = PaymentEvent(
        event_id="evt_late_checkout",
        event_kind=PaymentEventKind.CHECKOUT_COMPLETED,
        received_at=now_utc - timedelta(minutes=2),
        provider_customer_ref="cus_late",
        plan_label="monthly",
    )
    find_account = IdentityResolver._find_account

    async def _find_then_cancel(session, *, event):
        found = await find_account(session, event=event)
        if event.event_id == late_checkout.event_id:
            # Another worker commits the newer cancellation before this one locks the row.
            assert (await reconcile_payment_event(cancellation)).status == "processed"
        return found

    monkeypatch.setattr(IdentityResolver, "_find_account", staticmethod(_find_then_cancel))

    result = await reconcile_payment_event(late_checkout)

    assert result.status == "processed"
    assert result.outcome["result"] == "stale"
    async with SessionLocal.begin() as session:
        account = await session.get(Account, account_id)
        assert account is not None
        assert account.subscription_status == "FREE"
        assert account.subscription_event_at == cancellation.received_at
