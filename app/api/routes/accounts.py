from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.billing.reconciler.entitlement import AccountSubscriptionView
from app.db.repo.accounts_repo import AccountsRepo
from app.db.session import SessionLocal

router = APIRouter(tags=["accounts"])


class AccountSubscriptionResponse(BaseModel):
    account_id: UUID
    subscription_status: str
    current_plan: str | None = None
    subscription_end_date: datetime | None = None
    cancel_at_period_end: bool = False


@router.get(
    "/accounts/{account_id}/subscription",
    response_model=AccountSubscriptionResponse,
)
async def get_account_subscription(account_id: UUID) -> AccountSubscriptionResponse:
    async with SessionLocal.begin() as session:
        account = await AccountsRepo.get_by_id(session, account_id)
        if account is None:
            raise HTTPException(status_code=404, detail={"code": "E_ACCOUNT_NOT_FOUND"})
        view = AccountSubscriptionView.from_account(account, now_utc=datetime.now(timezone.utc))

    return AccountSubscriptionResponse(
        account_id=view.account_id,
        subscription_status=view.subscription_status,
        current_plan=view.current_plan,
        subscription_end_date=view.subscription_end_date,
        cancel_at_period_end=view.cancel_at_period_end,
    )
