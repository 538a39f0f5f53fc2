from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BOOLEAN,
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    SmallInteger,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class PromoCode(Base):
    __tablename__ = "promo_codes"
    __table_args__ = (
        CheckConstraint(
            "kind IN ('FREE_SUBSCRIPTION','DISCOUNT_PERCENT')",
            name="ck_promo_codes_kind",
        ),
        CheckConstraint(
            "free_months IS NULL OR free_months >= 1",
            name="ck_promo_codes_free_months_positive",
        ),
        CheckConstraint(
            "percent_off IS NULL OR (percent_off BETWEEN 1 AND 100)",
            name="ck_promo_codes_percent_off",
        ),
        CheckConstraint(
            "max_redemptions_per_account >= 1",
            name="ck_promo_codes_max_redemptions_per_account_positive",
        ),
        CheckConstraint(
            "max_total_redemptions IS NULL OR max_total_redemptions > 0",
            name="ck_promo_codes_max_total_redemptions_positive",
        ),
        CheckConstraint(
            "redeemed_total >= 0",
            name="ck_promo_codes_redeemed_total_non_negative",
        ),
        CheckConstraint(
            "((kind = 'FREE_SUBSCRIPTION' AND free_months IS NOT NULL AND percent_off IS NULL) "
            "OR (kind = 'DISCOUNT_PERCENT' AND percent_off IS NOT NULL AND free_months IS NULL))",
            name="ck_promo_codes_kind_payload_consistency",
        ),
        CheckConstraint(
            "valid_until IS NULL OR valid_from IS NULL OR valid_from <= valid_until",
            name="ck_promo_codes_validity_window",
        ),
        Index("idx_promo_codes_active", "active"),
        Index("idx_promo_codes_valid_until", "valid_until"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    campaign_name: Mapped[str] = mapped_column(String(128), nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    free_months: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    percent_off: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    active: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, server_default=text("true"))
    max_redemptions_per_account: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        server_default=text("1"),
    )
    max_total_redemptions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    redeemed_total: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    valid_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
