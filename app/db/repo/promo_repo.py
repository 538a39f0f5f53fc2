from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.promo_codes import PromoCode
from app.db.models.promo_redemptions import PromoRedemption


class PromoRepo:
    @staticmethod
    async def get_code_by_code(session: AsyncSession, code: str) -> PromoCode | None:
        stmt = select(PromoCode).where(PromoCode.code == code)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_code_by_code_for_update(session: AsyncSession, code: str) -> PromoCode | None:
        stmt = (
            select(PromoCode)
            .where(PromoCode.code == code)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_code_by_id_for_update(
        session: AsyncSession,
        promo_code_id: int,
    ) -> PromoCode | None:
        stmt = (
            select(PromoCode)
            .where(PromoCode.id == promo_code_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create_code(session: AsyncSession, *, promo_code: PromoCode) -> PromoCode:
        session.add(promo_code)
        await session.flush()
        return promo_code

    @staticmethod
    async def count_applied_redemptions(
        session: AsyncSession,
        *,
        promo_code_id: int,
        account_id: UUID,
    ) -> int:
        stmt = select(func.count(PromoRedemption.id)).where(
            PromoRedemption.promo_code_id == promo_code_id,
            PromoRedemption.account_id == account_id,
            PromoRedemption.status == "APPLIED",
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def count_pending_redemptions(
        session: AsyncSession,
        *,
        promo_code_id: int,
        fingerprint: str,
    ) -> int:
        stmt = select(func.count(PromoRedemption.id)).where(
            PromoRedemption.promo_code_id == promo_code_id,
            PromoRedemption.fingerprint == fingerprint,
            PromoRedemption.status == "PENDING",
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def get_redemption_by_idempotency_key(
        session: AsyncSession,
        idempotency_key: str,
    ) -> PromoRedemption | None:
        stmt = select(PromoRedemption).where(PromoRedemption.idempotency_key == idempotency_key)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_pending_redemptions_for_update(
        session: AsyncSession,
        *,
        fingerprint: str,
    ) -> list[PromoRedemption]:
        stmt = (
            select(PromoRedemption)
            .where(
                PromoRedemption.fingerprint == fingerprint,
                PromoRedemption.status == "PENDING",
                PromoRedemption.account_id.is_(None),
            )
            .order_by(PromoRedemption.created_at.asc(), PromoRedemption.id.asc())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def create_redemption(
        session: AsyncSession,
        *,
        redemption: PromoRedemption,
    ) -> PromoRedemption:
        session.add(redemption)
        await session.flush()
        return redemption
