from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.identity.errors import AccountNotFoundError
from app.billing.promo.constants import (
    PROMO_GRANT_DEFAULT_PLAN,
    REDEMPTION_STATUS_APPLIED,
    REDEMPTION_STATUS_PENDING,
    REDEMPTION_STATUS_REJECTED,
    REJECT_REASON_ALREADY_REDEEMED,
    REJECT_REASON_DEPLETED,
    REJECT_REASON_NOT_FOUND,
)
from app.billing.promo.errors import (
    PromoAlreadyRedeemedError,
    PromoDepletedError,
    PromoExpiredError,
    PromoInvalidError,
    PromoNotFoundError,
)
from app.billing.promo.rules import (
    build_modification,
    extend_subscription_end,
    is_within_validity_window,
    pending_idempotency_key,
)
from app.billing.promo.types import (
    EligibilityResult,
    Modification,
    ModificationType,
    PendingClaimResult,
    PromoApplyResult,
    PromoContext,
)
from app.db.models.accounts import Account
from app.db.models.promo_codes import PromoCode
from app.db.models.promo_redemptions import PromoRedemption
from app.db.repo.accounts_repo import AccountsRepo
from app.db.repo.promo_repo import PromoRepo
from app.services.promo_codes import normalize_promo_code

logger = structlog.get_logger(__name__)


class PromoService:
    @staticmethod
    async def _check_eligibility(
        session: AsyncSession,
        *,
        promo_code: PromoCode | None,
        context: PromoContext,
        now_utc: datetime,
    ) -> EligibilityResult:
        if promo_code is None or not promo_code.active:
            raise PromoNotFoundError
        if not is_within_validity_window(
            valid_from=promo_code.valid_from,
            valid_until=promo_code.valid_until,
            now_utc=now_utc,
        ):
            raise PromoExpiredError
        if (
            promo_code.max_total_redemptions is not None
            and promo_code.redeemed_total >= promo_code.max_total_redemptions
        ):
            raise PromoDepletedError

        if context.account_id is not None:
            applied_count = await PromoRepo.count_applied_redemptions(
                session,
                promo_code_id=promo_code.id,
                account_id=context.account_id,
            )
            if applied_count >= promo_code.max_redemptions_per_account:
                raise PromoAlreadyRedeemedError
        elif context.fingerprint:
            pending_count = await PromoRepo.count_pending_redemptions(
                session,
                promo_code_id=promo_code.id,
                fingerprint=context.fingerprint,
            )
            if pending_count > 0:
                raise PromoAlreadyRedeemedError

        return EligibilityResult(
            promo_code_id=promo_code.id,
            code=promo_code.code,
            modification=build_modification(
                kind=promo_code.kind,
                free_months=promo_code.free_months,
                percent_off=promo_code.percent_off,
                order_amount=context.order_amount,
            ),
        )

    @staticmethod
    async def evaluate(
        session: AsyncSession,
        *,
        code: str,
        context: PromoContext,
        now_utc: datetime | None = None,
    ) -> EligibilityResult:
        now_utc = now_utc or datetime.now(timezone.utc)
        normalized_code = normalize_promo_code(code)
        if not normalized_code:
            raise PromoInvalidError

        promo_code = await PromoRepo.get_code_by_code(session, normalized_code)
        return await PromoService._check_eligibility(
            session,
            promo_code=promo_code,
            context=context,
            now_utc=now_utc,
        )

    @staticmethod
    def _grant_subscription_months(account: Account, *, months: int, now_utc: datetime) -> None:
        account.subscription_end_date = extend_subscription_end(
            current_end=account.subscription_end_date,
            now_utc=now_utc,
            months=months,
        )
        account.subscription_status = "PREMIUM"
        account.current_plan = account.current_plan or PROMO_GRANT_DEFAULT_PLAN
        account.updated_at = now_utc

    @staticmethod
    async def _build_replay_result(
        session: AsyncSession,
        *,
        redemption: PromoRedemption,
    ) -> PromoApplyResult:
        account = None
        if redemption.account_id is not None:
            account = await AccountsRepo.get_by_id(session, redemption.account_id)
        return PromoApplyResult(
            redemption_id=redemption.id,
            status=redemption.status,
            modification=Modification.from_dict(redemption.resulting_modification),
            idempotent_replay=True,
            account_id=redemption.account_id,
            subscription_status=(account.subscription_status if account is not None else None),
            subscription_end_date=(
                account.subscription_end_date if account is not None else None
            ),
        )

    @staticmethod
    async def apply(
        session: AsyncSession,
        *,
        code: str,
        context: PromoContext,
        now_utc: datetime | None = None,
        grant_subscription: bool = True,
        idempotency_key: str | None = None,
        source_event_id: str | None = None,
    ) -> PromoApplyResult:
        now_utc = now_utc or datetime.now(timezone.utc)

        if idempotency_key is not None:
            existing = await PromoRepo.get_redemption_by_idempotency_key(session, idempotency_key)
            if existing is not None:
                return await PromoService._build_replay_result(session, redemption=existing)

        normalized_code = normalize_promo_code(code)
        if not normalized_code:
            raise PromoInvalidError
        if context.account_id is None and not context.fingerprint:
            raise PromoInvalidError

        if context.account_id is None:
            return await PromoService._apply_pending(
                session,
                normalized_code=normalized_code,
                context=context,
                now_utc=now_utc,
                source_event_id=source_event_id,
            )

        # Account row first, then code row: same lock order as the reconciler.
        account = await AccountsRepo.get_by_id_for_update(session, context.account_id)
        if account is None:
            raise AccountNotFoundError

        promo_code = await PromoRepo.get_code_by_code_for_update(session, normalized_code)
        eligibility = await PromoService._check_eligibility(
            session,
            promo_code=promo_code,
            context=context,
            now_utc=now_utc,
        )
        assert promo_code is not None

        redemption = await PromoRepo.create_redemption(
            session,
            redemption=PromoRedemption(
                id=uuid4(),
                promo_code_id=promo_code.id,
                account_id=account.id,
                fingerprint=context.fingerprint,
                status=REDEMPTION_STATUS_APPLIED,
                reject_reason=None,
                idempotency_key=idempotency_key,
                source_event_id=source_event_id,
                resulting_modification=eligibility.modification.to_dict(),
                created_at=now_utc,
                applied_at=now_utc,
                updated_at=now_utc,
            ),
        )
        promo_code.redeemed_total += 1
        promo_code.updated_at = now_utc

        if grant_subscription and eligibility.modification.type == ModificationType.TRIAL_EXTENSION:
            PromoService._grant_subscription_months(
                account,
                months=int(eligibility.modification.months or 0),
                now_utc=now_utc,
            )

        logger.info(
            "promo_redeemed",
            promo_code_id=promo_code.id,
            account_id=str(account.id),
            redemption_id=str(redemption.id),
            modification=eligibility.modification.to_dict(),
            source_event_id=source_event_id,
        )
        return PromoApplyResult(
            redemption_id=redemption.id,
            status=REDEMPTION_STATUS_APPLIED,
            modification=eligibility.modification,
            idempotent_replay=False,
            account_id=account.id,
            subscription_status=account.subscription_status,
            subscription_end_date=account.subscription_end_date,
        )

    @staticmethod
    async def _apply_pending(
        session: AsyncSession,
        *,
        normalized_code: str,
        context: PromoContext,
        now_utc: datetime,
        source_event_id: str | None,
    ) -> PromoApplyResult:
        assert context.fingerprint is not None

        promo_code = await PromoRepo.get_code_by_code_for_update(session, normalized_code)
        if promo_code is not None:
            pending_key = pending_idempotency_key(
                promo_code_id=promo_code.id,
                fingerprint=context.fingerprint,
            )
            existing = await PromoRepo.get_redemption_by_idempotency_key(session, pending_key)
            if existing is not None:
                return await PromoService._build_replay_result(session, redemption=existing)

        eligibility = await PromoService._check_eligibility(
            session,
            promo_code=promo_code,
            context=context,
            now_utc=now_utc,
        )
        assert promo_code is not None

        redemption = await PromoRepo.create_redemption(
            session,
            redemption=PromoRedemption(
                id=uuid4(),
                promo_code_id=promo_code.id,
                account_id=None,
                fingerprint=context.fingerprint,
                status=REDEMPTION_STATUS_PENDING,
                reject_reason=None,
                idempotency_key=pending_key,
                source_event_id=source_event_id,
                resulting_modification=eligibility.modification.to_dict(),
                created_at=now_utc,
                applied_at=None,
                updated_at=now_utc,
            ),
        )
        logger.info(
            "promo_pending_recorded",
            promo_code_id=promo_code.id,
            redemption_id=str(redemption.id),
        )
        return PromoApplyResult(
            redemption_id=redemption.id,
            status=REDEMPTION_STATUS_PENDING,
            modification=eligibility.modification,
            idempotent_replay=False,
        )

    @staticmethod
    async def claim_pending(
        session: AsyncSession,
        *,
        account: Account,
        fingerprint: str,
        now_utc: datetime | None = None,
    ) -> list[PendingClaimResult]:
        """Bind every pending fingerprint redemption to ``account``.

        The caller must hold the account row lock. Each pending row leaves the
        PENDING state exactly once: APPLIED when the account still has room under
        the per-account cap, REJECTED otherwise.
        """
        now_utc = now_utc or datetime.now(timezone.utc)
        pending_redemptions = await PromoRepo.list_pending_redemptions_for_update(
            session,
            fingerprint=fingerprint,
        )

        results: list[PendingClaimResult] = []
        for redemption in pending_redemptions:
            promo_code = await PromoRepo.get_code_by_id_for_update(session, redemption.promo_code_id)
            reject_reason: str | None = None
            if promo_code is None:
                reject_reason = REJECT_REASON_NOT_FOUND
            elif (
                promo_code.max_total_redemptions is not None
                and promo_code.redeemed_total >= promo_code.max_total_redemptions
            ):
                reject_reason = REJECT_REASON_DEPLETED
            else:
                applied_count = await PromoRepo.count_applied_redemptions(
                    session,
                    promo_code_id=promo_code.id,
                    account_id=account.id,
                )
                if applied_count >= promo_code.max_redemptions_per_account:
                    reject_reason = REJECT_REASON_ALREADY_REDEEMED

            redemption.account_id = account.id
            redemption.updated_at = now_utc
            if reject_reason is not None:
                redemption.status = REDEMPTION_STATUS_REJECTED
                redemption.reject_reason = reject_reason
                logger.info(
                    "promo_pending_rejected",
                    redemption_id=str(redemption.id),
                    account_id=str(account.id),
                    reject_reason=reject_reason,
                )
                results.append(
                    PendingClaimResult(
                        redemption_id=redemption.id,
                        promo_code_id=redemption.promo_code_id,
                        status=REDEMPTION_STATUS_REJECTED,
                        reject_reason=reject_reason,
                    )
                )
                continue

            assert promo_code is not None
            modification = Modification.from_dict(redemption.resulting_modification)
            redemption.status = REDEMPTION_STATUS_APPLIED
            redemption.applied_at = now_utc
            promo_code.redeemed_total += 1
            promo_code.updated_at = now_utc
            if modification.type == ModificationType.TRIAL_EXTENSION:
                PromoService._grant_subscription_months(
                    account,
                    months=int(modification.months or 0),
                    now_utc=now_utc,
                )

            logger.info(
                "promo_pending_claimed",
                redemption_id=str(redemption.id),
                account_id=str(account.id),
                promo_code_id=promo_code.id,
            )
            results.append(
                PendingClaimResult(
                    redemption_id=redemption.id,
                    promo_code_id=promo_code.id,
                    status=REDEMPTION_STATUS_APPLIED,
                    modification=modification,
                )
            )
        return results
