from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class ProcessedPaymentEvent(Base):
    __tablename__ = "processed_payment_events"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PROCESSING','PROCESSED','FAILED')",
            name="ck_processed_payment_events_status",
        ),
        CheckConstraint(
            "event_kind IN ('CHECKOUT_COMPLETED','SUBSCRIPTION_CREATED','SUBSCRIPTION_UPDATED')",
            name="ck_processed_payment_events_kind",
        ),
        Index("idx_processed_payment_events_account", "account_id"),
        Index(
            "idx_processed_payment_events_failed",
            "processed_at",
            postgresql_where=text("status = 'FAILED'"),
        ),
    )

    event_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    event_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    account_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("accounts.id"),
        nullable=True,
    )
    payload: Mapped[dict[str, object]] = mapped_column(JSONB, nullable=False)
    outcome: Mapped[dict[str, object]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )
    failure_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
