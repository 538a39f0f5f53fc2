"""seed_launch_promo_codes

Revision ID: d2e3f4a5b6c7
Revises: c1d2e3f4a5b6
Create Date: 2026-10-18 09:30:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "d2e3f4a5b6c7"
down_revision: str | None = "c1d2e3f4a5b6"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

LAUNCH_CODES = ("PAPERCLIP", "TELESCOPE2025", "MIDNIGHT50")


def upgrade() -> None:
    op.execute(
        sa.text(
            """
            INSERT INTO promo_codes (
                code, campaign_name, kind, free_months, percent_off, active,
                max_redemptions_per_account, max_total_redemptions, redeemed_total,
                valid_from, valid_until, created_by, created_at, updated_at
            )
            VALUES
                ('PAPERCLIP', 'launch_free_month', 'FREE_SUBSCRIPTION', 1, NULL, true,
                 1, NULL, 0, NULL, NULL, 'migration', now(), now()),
                ('TELESCOPE2025', 'partner_telescope_2025', 'FREE_SUBSCRIPTION', 3, NULL, true,
                 1, NULL, 0, NULL, '2025-12-31T23:59:59+00:00', 'migration', now(), now()),
                ('MIDNIGHT50', 'launch_half_price', 'DISCOUNT_PERCENT', NULL, 50, true,
                 1, NULL, 0, NULL, NULL, 'migration', now(), now())
            ON CONFLICT (code) DO NOTHING
            """
        )
    )


def downgrade() -> None:
    op.execute(
        sa.text("DELETE FROM promo_codes WHERE code IN :codes AND redeemed_total = 0").bindparams(
            sa.bindparam("codes", value=list(LAUNCH_CODES), expanding=True)
        )
    )
