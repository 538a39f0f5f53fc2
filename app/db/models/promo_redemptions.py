from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class PromoRedemption(Base):
    __tablename__ = "promo_redemptions"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING','APPLIED','REJECTED')",
            name="ck_promo_redemptions_status",
        ),
        CheckConstraint(
            "account_id IS NOT NULL OR fingerprint IS NOT NULL",
            name="ck_promo_redemptions_owner_present",
        ),
        CheckConstraint(
            "status <> 'APPLIED' OR account_id IS NOT NULL",
            name="ck_promo_redemptions_applied_has_account",
        ),
        Index("idx_promo_redemptions_code_account", "promo_code_id", "account_id"),
        Index(
            "idx_promo_redemptions_pending_fingerprint",
            "fingerprint",
            postgresql_where=text("status = 'PENDING'"),
        ),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    promo_code_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("promo_codes.id"),
        nullable=False,
    )
    account_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("accounts.id"),
        nullable=True,
    )
    fingerprint: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    reject_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(160), unique=True, nullable=True)
    source_event_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    resulting_modification: Mapped[dict[str, object]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
