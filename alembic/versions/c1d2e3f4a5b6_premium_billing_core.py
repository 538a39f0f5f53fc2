"""premium_billing_core

Revision ID: c1d2e3f4a5b6
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "c1d2e3f4a5b6"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("subscription_status", sa.String(16), nullable=False, server_default=sa.text("'FREE'")),
        sa.Column("current_plan", sa.String(32), nullable=True),
        sa.Column("provider_customer_ref", sa.String(128), nullable=True),
        sa.Column("provider_subscription_ref", sa.String(128), nullable=True),
        sa.Column("subscription_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("subscription_event_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("subscription_status IN ('FREE','PREMIUM')", name="ck_accounts_subscription_status"),
        sa.UniqueConstraint("provider_customer_ref", name="uq_accounts_provider_customer_ref"),
    )
    op.create_index("uq_accounts_email_lower", "accounts", [sa.text("lower(email)")], unique=True)
    op.create_index("idx_accounts_provider_subscription_ref", "accounts", ["provider_subscription_ref"])
    op.create_index("idx_accounts_updated_at", "accounts", ["updated_at"])

    op.create_table(
        "promo_codes",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("campaign_name", sa.String(128), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("free_months", sa.SmallInteger(), nullable=True),
        sa.Column("percent_off", sa.SmallInteger(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("max_redemptions_per_account", sa.SmallInteger(), nullable=False, server_default=sa.text("1")),
        sa.Column("max_total_redemptions", sa.Integer(), nullable=True),
        sa.Column("redeemed_total", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("kind IN ('FREE_SUBSCRIPTION','DISCOUNT_PERCENT')", name="ck_promo_codes_kind"),
        sa.CheckConstraint("free_months IS NULL OR free_months >= 1", name="ck_promo_codes_free_months_positive"),
        sa.CheckConstraint("percent_off IS NULL OR (percent_off BETWEEN 1 AND 100)", name="ck_promo_codes_percent_off"),
        sa.CheckConstraint("max_redemptions_per_account >= 1", name="ck_promo_codes_max_redemptions_per_account_positive"),
        sa.CheckConstraint("max_total_redemptions IS NULL OR max_total_redemptions > 0", name="ck_promo_codes_max_total_redemptions_positive"),
        sa.CheckConstraint("redeemed_total >= 0", name="ck_promo_codes_redeemed_total_non_negative"),
        sa.CheckConstraint("((kind = 'FREE_SUBSCRIPTION' AND free_months IS NOT NULL AND percent_off IS NULL) OR (kind = 'DISCOUNT_PERCENT' AND percent_off IS NOT NULL AND free_months IS NULL))", name="ck_promo_codes_kind_payload_consistency"),
        sa.CheckConstraint("valid_until IS NULL OR valid_from IS NULL OR valid_from <= valid_until", name="ck_promo_codes_validity_window"),
        sa.UniqueConstraint("code", name="uq_promo_codes_code"),
    )
    op.create_index("idx_promo_codes_active", "promo_codes", ["active"])
    op.create_index("idx_promo_codes_valid_until", "promo_codes", ["valid_until"])

    op.create_table(
        "promo_redemptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("promo_code_id", sa.BigInteger(), nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("fingerprint", sa.String(128), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("reject_reason", sa.String(64), nullable=True),
        sa.Column("idempotency_key", sa.String(160), nullable=True),
        sa.Column("source_event_id", sa.String(128), nullable=True),
        sa.Column("resulting_modification", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('PENDING','APPLIED','REJECTED')", name="ck_promo_redemptions_status"),
        sa.CheckConstraint("account_id IS NOT NULL OR fingerprint IS NOT NULL", name="ck_promo_redemptions_owner_present"),
        sa.CheckConstraint("status <> 'APPLIED' OR account_id IS NOT NULL", name="ck_promo_redemptions_applied_has_account"),
        sa.ForeignKeyConstraint(["promo_code_id"], ["promo_codes.id"]),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.UniqueConstraint("idempotency_key", name="uq_promo_redemptions_idempotency_key"),
    )
    op.create_index("idx_promo_redemptions_code_account", "promo_redemptions", ["promo_code_id", "account_id"])
    op.create_index(
        "idx_promo_redemptions_pending_fingerprint",
        "promo_redemptions",
        ["fingerprint"],
        postgresql_where=sa.text("status = 'PENDING'"),
    )

    op.create_table(
        "processed_payment_events",
        sa.Column("event_id", sa.String(128), primary_key=True),
        sa.Column("event_kind", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("outcome", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("failure_reason", sa.String(64), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("status IN ('PROCESSING','PROCESSED','FAILED')", name="ck_processed_payment_events_status"),
        sa.CheckConstraint("event_kind IN ('CHECKOUT_COMPLETED','SUBSCRIPTION_CREATED','SUBSCRIPTION_UPDATED')", name="ck_processed_payment_events_kind"),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
    )
    op.create_index("idx_processed_payment_events_account", "processed_payment_events", ["account_id"])
    op.create_index(
        "idx_processed_payment_events_failed",
        "processed_payment_events",
        ["processed_at"],
        postgresql_where=sa.text("status = 'FAILED'"),
    )


def downgrade() -> None:
    op.drop_index("idx_processed_payment_events_failed", table_name="processed_payment_events")
    op.drop_index("idx_processed_payment_events_account", table_name="processed_payment_events")
    op.drop_table("processed_payment_events")
    op.drop_index("idx_promo_redemptions_pending_fingerprint", table_name="promo_redemptions")
    op.drop_index("idx_promo_redemptions_code_account", table_name="promo_redemptions")
    op.drop_table("promo_redemptions")
    op.drop_index("idx_promo_codes_valid_until", table_name="promo_codes")
    op.drop_index("idx_promo_codes_active", table_name="promo_codes")
    op.drop_table("promo_codes")
    op.drop_index("idx_accounts_updated_at", table_name="accounts")
    op.drop_index("idx_accounts_provider_subscription_ref", table_name="accounts")
    op.drop_index("uq_accounts_email_lower", table_name="accounts")
    op.drop_table("accounts")
