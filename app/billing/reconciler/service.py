from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID

import structlog
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.identity.errors import AccountNotFoundError, AmbiguousMatchError
from app.billing.identity.resolver import IdentityResolver
from app.billing.promo.errors import (
    PromoAlreadyRedeemedError,
    PromoDepletedError,
    PromoError,
    PromoExpiredError,
    PromoNotFoundError,
)
from app.billing.promo.service import PromoService
from app.billing.promo.types import PromoContext
from app.billing.rate_limit.errors import RateLimitedError
from app.billing.rate_limit.limiter import RateLimiter, get_rate_limiter
from app.billing.reconciler.constants import (
    FAILURE_REASON_ACCOUNT_NOT_FOUND,
    FAILURE_REASON_AMBIGUOUS_MATCH,
    LEDGER_STATUS_FAILED,
    LEDGER_STATUS_PROCESSED,
)
from app.billing.reconciler.errors import PaymentEventNotReplayableError, StoreUnavailableError
from app.billing.reconciler.rules import decide_transition, next_event_watermark
from app.billing.reconciler.types import (
    PaymentEvent,
    ReconcileResult,
    SubscriptionState,
    TransitionDecision,
)
from app.core.config import get_settings
from app.db.models.accounts import Account
from app.db.repo.processed_payment_events_repo import ProcessedPaymentEventsRepo
from app.db.session import SessionLocal

logger = structlog.get_logger(__name__)

STORE_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, TimeoutError, OSError)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _state_of(account: Account) -> SubscriptionState:
    return SubscriptionState(
        subscription_status=account.subscription_status,
        current_plan=account.current_plan,
        subscription_end_date=account.subscription_end_date,
        cancel_at_period_end=bool(account.subscription_cancel_at_period_end),
    )


def _promo_status_for(exc: Exception) -> str:
    if isinstance(exc, RateLimitedError):
        return "rate_limited"
    if isinstance(exc, PromoAlreadyRedeemedError):
        return "already_redeemed"
    if isinstance(exc, PromoExpiredError):
        return "expired"
    if isinstance(exc, PromoDepletedError):
        return "depleted"
    if isinstance(exc, PromoNotFoundError):
        return "not_found"
    if isinstance(exc, PromoError):
        return "invalid"
    return "error"


class ReconcilerService:
    @staticmethod
    def _write_account(
        account: Account,
        *,
        event: PaymentEvent,
        decision: TransitionDecision,
        now_utc: datetime,
    ) -> None:
        if event.provider_subscription_ref and (
            not decision.stale or account.provider_subscription_ref is None
        ):
            account.provider_subscription_ref = event.provider_subscription_ref

        account.subscription_status = decision.state.subscription_status
        account.current_plan = decision.state.current_plan
        account.subscription_end_date = decision.state.subscription_end_date
        account.subscription_cancel_at_period_end = decision.state.cancel_at_period_end
        account.subscription_event_at = next_event_watermark(
            last_event_at=account.subscription_event_at,
            event_received_at=event.received_at,
        )
        account.updated_at = now_utc

    @staticmethod
    async def _apply_attached_promo(
        session: AsyncSession,
        *,
        account_id: UUID,
        event: PaymentEvent,
        now_utc: datetime,
        rate_limiter: RateLimiter,
    ) -> dict[str, object]:
        assert event.promo_code is not None
        settings = get_settings()
        try:
            async with session.begin_nested():
                await rate_limiter.enforce(
                    f"promo:account:{account_id}",
                    limit=settings.reconciler_promo_rate_limit,
                    window=timedelta(seconds=settings.promo_rate_limit_window_seconds),
                    now_utc=now_utc,
                )
                result = await PromoService.apply(
                    session,
                    code=event.promo_code,
                    context=PromoContext(
                        order_amount=event.order_amount,
                        account_id=account_id,
                        fingerprint=event.fingerprint,
                    ),
                    now_utc=now_utc,
                    grant_subscription=False,
                    idempotency_key=f"payment_event:{event.event_id}",
                    source_event_id=event.event_id,
                )
        except STORE_UNAVAILABLE_ERRORS:
            raise
        except Exception as exc:
            # The savepoint is already rolled back; the paid transition must still commit.
            promo_status = _promo_status_for(exc)
            logger.warning(
                "payment_event_promo_skipped",
                event_id=event.event_id,
                account_id=str(account_id),
                promo_code=event.promo_code,
                promo_status=promo_status,
                error_type=type(exc).__name__,
            )
            return {"promo_status": promo_status, "promo_code": event.promo_code}

        return {
            "promo_status": "replayed" if result.idempotent_replay else "applied",
            "promo_code": event.promo_code,
            "promo_redemption_id": str(result.redemption_id),
            "promo_modification": result.modification.to_dict(),
        }

    @staticmethod
    async def _record_failure(
        session: AsyncSession,
        *,
        event: PaymentEvent,
        failure_reason: str,
        now_utc: datetime,
    ) -> ReconcileResult:
        outcome: dict[str, object] = {"result": "failed", "failure_reason": failure_reason}
        await ProcessedPaymentEventsRepo.set_outcome(
            session,
            event_id=event.event_id,
            status=LEDGER_STATUS_FAILED,
            account_id=None,
            outcome=outcome,
            failure_reason=failure_reason,
            processed_at=now_utc,
        )
        logger.warning(
            "payment_event_unresolved",
            event_id=event.event_id,
            event_kind=event.event_kind.value,
            failure_reason=failure_reason,
            payload=event.to_payload(),
        )
        return ReconcileResult(
            event_id=event.event_id,
            status="failed",
            idempotent_replay=False,
            failure_reason=failure_reason,
            outcome=outcome,
        )

    @staticmethod
    async def _process_claimed_event(
        session: AsyncSession,
        *,
        event: PaymentEvent,
        now_utc: datetime,
        rate_limiter: RateLimiter,
    ) -> ReconcileResult:
        try:
            account = await IdentityResolver.resolve(session, event=event)
        except AmbiguousMatchError:
            return await ReconcilerService._record_failure(
                session,
                event=event,
                failure_reason=FAILURE_REASON_AMBIGUOUS_MATCH,
                now_utc=now_utc,
            )
        except AccountNotFoundError:
            return await ReconcilerService._record_failure(
                session,
                event=event,
                failure_reason=FAILURE_REASON_ACCOUNT_NOT_FOUND,
                now_utc=now_utc,
            )

        account_id = account.id
        previous_status = account.subscription_status
        decision = decide_transition(
            _state_of(account),
            last_event_at=account.subscription_event_at,
            event=event,
            now_utc=now_utc,
        )
        ReconcilerService._write_account(account, event=event, decision=decision, now_utc=now_utc)
        await session.flush()

        claimed: list[dict[str, object]] = []
        if event.fingerprint:
            claims = await PromoService.claim_pending(
                session,
                account=account,
                fingerprint=event.fingerprint,
                now_utc=now_utc,
            )
            claimed = [
                {
                    "redemption_id": str(claim.redemption_id),
                    "status": claim.status,
                    "reject_reason": claim.reject_reason,
                }
                for claim in claims
            ]
            if claims:
                await session.flush()

        outcome: dict[str, object] = {
            "result": "stale" if decision.stale else "applied",
            "event_kind": event.event_kind.value,
            "previous_status": previous_status,
            "subscription_status": account.subscription_status,
            "current_plan": account.current_plan,
            "subscription_end_date": _isoformat(account.subscription_end_date),
            "cancel_at_period_end": account.subscription_cancel_at_period_end,
            "expired_by_guard": decision.expired_by_guard,
            "claimed_redemptions": claimed,
        }

        if event.promo_code:
            outcome.update(
                await ReconcilerService._apply_attached_promo(
                    session,
                    account_id=account_id,
                    event=event,
                    now_utc=now_utc,
                    rate_limiter=rate_limiter,
                )
            )

        await ProcessedPaymentEventsRepo.set_outcome(
            session,
            event_id=event.event_id,
            status=LEDGER_STATUS_PROCESSED,
            account_id=account_id,
            outcome=outcome,
            failure_reason=None,
            processed_at=now_utc,
        )
        logger.info(
            "payment_event_processed",
            event_id=event.event_id,
            event_kind=event.event_kind.value,
            account_id=str(account_id),
            previous_status=previous_status,
            subscription_status=outcome["subscription_status"],
            stale=decision.stale,
            promo_status=outcome.get("promo_status"),
        )
        return ReconcileResult(
            event_id=event.event_id,
            status="processed",
            idempotent_replay=False,
            account_id=account_id,
            outcome=outcome,
        )

    @staticmethod
    async def apply_event(
        session: AsyncSession,
        *,
        event: PaymentEvent,
        now_utc: datetime | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> ReconcileResult:
        """Apply one normalized payment event exactly once.

        Must run inside a single transaction. The ledger slot, the account
        write and the outcome record commit together or not at all.
        """
        now_utc = now_utc or datetime.now(timezone.utc)
        rate_limiter = rate_limiter or get_rate_limiter()

        slot_created = await ProcessedPaymentEventsRepo.try_create_processing_slot(
            session,
            event_id=event.event_id,
            event_kind=event.event_kind.value,
            payload=event.to_payload(),
            received_at=event.received_at,
        )
        if not slot_created:
            existing = await ProcessedPaymentEventsRepo.get_by_event_id(
                session,
                event_id=event.event_id,
            )
            logger.info(
                "payment_event_duplicate",
                event_id=event.event_id,
                ledger_status=existing.status if existing is not None else None,
            )
            return ReconcileResult(
                event_id=event.event_id,
                status="duplicate",
                idempotent_replay=True,
                account_id=existing.account_id if existing is not None else None,
                failure_reason=existing.failure_reason if existing is not None else None,
                outcome=dict(existing.outcome) if existing is not None else {},
            )

        return await ReconcilerService._process_claimed_event(
            session,
            event=event,
            now_utc=now_utc,
            rate_limiter=rate_limiter,
        )

    @staticmethod
    async def replay_failed(
        session: AsyncSession,
        *,
        event_id: str,
        now_utc: datetime | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> ReconcileResult:
        now_utc = now_utc or datetime.now(timezone.utc)
        rate_limiter = rate_limiter or get_rate_limiter()

        row = await ProcessedPaymentEventsRepo.get_by_event_id_for_update(session, event_id=event_id)
        if row is None:
            raise PaymentEventNotReplayableError("event not found")
        if row.status != LEDGER_STATUS_FAILED:
            raise PaymentEventNotReplayableError(f"event status is {row.status}")

        event = PaymentEvent.from_payload(dict(row.payload))
        reclaimed = await ProcessedPaymentEventsRepo.try_reclaim_failed_slot(
            session,
            event_id=event_id,
        )
        if not reclaimed:
            raise PaymentEventNotReplayableError("event is no longer failed")

        logger.info("payment_event_replay_started", event_id=event_id)
        return await ReconcilerService._process_claimed_event(
            session,
            event=event,
            now_utc=now_utc,
            rate_limiter=rate_limiter,
        )


async def reconcile_payment_event(
    event: PaymentEvent,
    *,
    now_utc: datetime | None = None,
) -> ReconcileResult:
    try:
        async with SessionLocal.begin() as session:
            return await ReconcilerService.apply_event(session, event=event, now_utc=now_utc)
    except STORE_UNAVAILABLE_ERRORS as exc:
        logger.warning(
            "payment_event_store_unavailable",
            event_id=event.event_id,
            error_type=type(exc).__name__,
        )
        raise StoreUnavailableError(str(exc)) from exc


async def replay_failed_payment_event(
    event_id: str,
    *,
    now_utc: datetime | None = None,
) -> ReconcileResult:
    try:
        async with SessionLocal.begin() as session:
            return await ReconcilerService.replay_failed(session, event_id=event_id, now_utc=now_utc)
    except STORE_UNAVAILABLE_ERRORS as exc:
        logger.warning(
            "payment_event_store_unavailable",
            event_id=event_id,
            error_type=type(exc).__name__,
        )
        raise StoreUnavailableError(str(exc)) from exc
