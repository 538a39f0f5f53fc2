from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import BOOLEAN, CheckConstraint, DateTime, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint(
            "subscription_status IN ('FREE','PREMIUM')",
            name="ck_accounts_subscription_status",
        ),
        Index("uq_accounts_email_lower", text("lower(email)"), unique=True),
        Index("idx_accounts_provider_subscription_ref", "provider_subscription_ref"),
        Index("idx_accounts_updated_at", "updated_at"),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    subscription_status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        server_default=text("'FREE'"),
    )
    current_plan: Mapped[str | None] = mapped_column(String(32), nullable=True)
    provider_customer_ref: Mapped[str | None] = mapped_column(
        String(128),
        unique=True,
        nullable=True,
    )
    provider_subscription_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    subscription_end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    subscription_cancel_at_period_end: Mapped[bool] = mapped_column(
        BOOLEAN,
        nullable=False,
        server_default=text("false"),
    )
    subscription_event_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
