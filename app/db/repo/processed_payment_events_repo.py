from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.processed_payment_events import ProcessedPaymentEvent


class ProcessedPaymentEventsRepo:
    @staticmethod
    async def get_by_event_id(
        session: AsyncSession,
        *,
        event_id: str,
    ) -> ProcessedPaymentEvent | None:
        return await session.get(ProcessedPaymentEvent, event_id)

    @staticmethod
    async def get_by_event_id_for_update(
        session: AsyncSession,
        *,
        event_id: str,
    ) -> ProcessedPaymentEvent | None:
        stmt = (
            select(ProcessedPaymentEvent)
            .where(ProcessedPaymentEvent.event_id == event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def try_create_processing_slot(
        session: AsyncSession,
        *,
        event_id: str,
        event_kind: str,
        payload: dict[str, object],
        received_at: datetime,
    ) -> bool:
        stmt = (
            postgresql_insert(ProcessedPaymentEvent)
            .values(
                event_id=event_id,
                event_kind=event_kind,
                status="PROCESSING",
                payload=payload,
                outcome={},
                received_at=received_at,
                processed_at=func.now(),
            )
            .on_conflict_do_nothing(index_elements=[ProcessedPaymentEvent.event_id])
            .returning(ProcessedPaymentEvent.event_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def try_reclaim_failed_slot(session: AsyncSession, *, event_id: str) -> bool:
        stmt = (
            update(ProcessedPaymentEvent)
            .where(
                ProcessedPaymentEvent.event_id == event_id,
                ProcessedPaymentEvent.status == "FAILED",
            )
            .values(
                status="PROCESSING",
                failure_reason=None,
                processed_at=func.now(),
            )
            .returning(ProcessedPaymentEvent.event_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def set_outcome(
        session: AsyncSession,
        *,
        event_id: str,
        status: str,
        account_id: UUID | None,
        outcome: dict[str, object],
        failure_reason: str | None,
        processed_at: datetime,
    ) -> int:
        stmt = (
            update(ProcessedPaymentEvent)
            .where(ProcessedPaymentEvent.event_id == event_id)
            .values(
                status=status,
                account_id=account_id,
                outcome=outcome,
                failure_reason=failure_reason,
                processed_at=processed_at,
            )
            .returning(ProcessedPaymentEvent.event_id)
        )
        result = await session.execute(stmt)
        return 1 if result.scalar_one_or_none() is not None else 0

    @staticmethod
    async def list_by_status(
        session: AsyncSession,
        *,
        status: str,
        limit: int,
    ) -> list[ProcessedPaymentEvent]:
        stmt = (
            select(ProcessedPaymentEvent)
            .where(ProcessedPaymentEvent.status == status)
            .order_by(
                ProcessedPaymentEvent.processed_at.desc(),
                ProcessedPaymentEvent.event_id.asc(),
            )
            .limit(max(1, int(limit)))
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
