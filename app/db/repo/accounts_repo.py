from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.accounts import Account


class AccountsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, account_id: UUID) -> Account | None:
        return await session.get(Account, account_id)

    @staticmethod
    async def get_by_id_for_update(session: AsyncSession, account_id: UUID) -> Account | None:
        stmt = (
            select(Account)
            .where(Account.id == account_id)
            .with_for_update()
            # The row may already sit in the identity map from an unlocked lookup.
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_provider_customer_ref(
        session: AsyncSession,
        provider_customer_ref: str,
    ) -> Account | None:
        stmt = select(Account).where(Account.provider_customer_ref == provider_customer_ref)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_by_email(session: AsyncSession, email: str, *, limit: int = 2) -> list[Account]:
        stmt = (
            select(Account)
            .where(func.lower(Account.email) == email.strip().lower())
            .order_by(Account.created_at.asc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        email: str,
        now_utc: datetime,
        account_id: UUID | None = None,
    ) -> Account:
        account = Account(
            id=account_id or uuid4(),
            email=email.strip(),
            subscription_status="FREE",
            current_plan=None,
            provider_customer_ref=None,
            provider_subscription_ref=None,
            subscription_end_date=None,
            subscription_cancel_at_period_end=False,
            subscription_event_at=None,
            created_at=now_utc,
            updated_at=now_utc,
        )
        session.add(account)
        await session.flush()
        return account
