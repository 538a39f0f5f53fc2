from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.identity.errors import AccountNotFoundError, AmbiguousMatchError
from app.billing.reconciler.types import PaymentEvent
from app.db.models.accounts import Account
from app.db.repo.accounts_repo import AccountsRepo

logger = structlog.get_logger(__name__)


class IdentityResolver:
    @staticmethod
    async def _find_account(session: AsyncSession, *, event: PaymentEvent) -> tuple[Account, str]:
        if event.provider_customer_ref:
            account = await AccountsRepo.get_by_provider_customer_ref(
                session,
                event.provider_customer_ref,
            )
            if account is not None:
                return account, "provider_customer_ref"

        if event.account_id_hint is not None:
            account = await AccountsRepo.get_by_id(session, event.account_id_hint)
            if account is not None:
                return account, "account_id_hint"

        if event.email_hint and event.email_hint.strip():
            matches = await AccountsRepo.list_by_email(session, event.email_hint, limit=2)
            if len(matches) > 1:
                raise AmbiguousMatchError
            if matches:
                return matches[0], "email_hint"

        raise AccountNotFoundError

    @staticmethod
    async def resolve(session: AsyncSession, *, event: PaymentEvent) -> Account:
        """Map a payment event to exactly one account and lock its row.

        Strategies run in priority order: provider customer ref, account id
        hint, then case-insensitive email. The account row stays locked until
        the caller's transaction ends.
        """
        matched, strategy = await IdentityResolver._find_account(session, event=event)
        account = await AccountsRepo.get_by_id_for_update(session, matched.id)
        if account is None:
            raise AccountNotFoundError

        if event.provider_customer_ref:
            if account.provider_customer_ref is None:
                account.provider_customer_ref = event.provider_customer_ref
                logger.info(
                    "account_provider_customer_linked",
                    account_id=str(account.id),
                    event_id=event.event_id,
                    strategy=strategy,
                )
            elif account.provider_customer_ref != event.provider_customer_ref:
                logger.warning(
                    "account_provider_customer_mismatch",
                    account_id=str(account.id),
                    event_id=event.event_id,
                    strategy=strategy,
                )

        logger.debug(
            "payment_event_account_resolved",
            account_id=str(account.id),
            event_id=event.event_id,
            strategy=strategy,
        )
        return account
