from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from app.billing.reconciler.constants import SUBSCRIPTION_STATUS_FREE, SUBSCRIPTION_STATUS_PREMIUM
from app.db.models.accounts import Account


def is_entitled(account: Account, *, now_utc: datetime) -> bool:
    if account.subscription_status != SUBSCRIPTION_STATUS_PREMIUM:
        return False
    end_date = account.subscription_end_date
    return end_date is None or end_date > now_utc


@dataclass(frozen=True, slots=True)
class AccountSubscriptionView:
    account_id: UUID
    subscription_status: str
    current_plan: str | None
    subscription_end_date: datetime | None
    cancel_at_period_end: bool

    @classmethod
    def from_account(cls, account: Account, *, now_utc: datetime) -> AccountSubscriptionView:
        if not is_entitled(account, now_utc=now_utc):
            return cls(
                account_id=account.id,
                subscription_status=SUBSCRIPTION_STATUS_FREE,
                current_plan=None,
                subscription_end_date=account.subscription_end_date,
                cancel_at_period_end=False,
            )
        return cls(
            account_id=account.id,
            subscription_status=SUBSCRIPTION_STATUS_PREMIUM,
            current_plan=account.current_plan,
            subscription_end_date=account.subscription_end_date,
            cancel_at_period_end=bool(account.subscription_cancel_at_period_end),
        )
