from __future__ import annotations

from sqlalchemy import CheckConstraint

from app.db.models import (  # noqa: F401
    Account,
    ProcessedPaymentEvent,
    PromoCode,
    PromoRedemption,
)
from app.db.models.base import Base


def _check_names(table_name: str) -> set[str]:
    table = Base.metadata.tables[table_name]
    return {
        constraint.name for constraint in table.constraints if isinstance(constraint, CheckConstraint)
    }


def test_billing_tables_registered() -> None:
    expected_tables = {
        "accounts",
        "promo_codes",
        "promo_redemptions",
        "processed_payment_events",
    }
    assert expected_tables.issubset(set(Base.metadata.tables))


def test_critical_constraints_present() -> None:
    accounts = Base.metadata.tables["accounts"]
    account_indexes = {index.name: index for index in accounts.indexes}
    assert account_indexes["uq_accounts_email_lower"].unique is True
    assert accounts.c.provider_customer_ref.unique is True
    assert "ck_accounts_subscription_status" in _check_names("accounts")

    assert {
        "ck_promo_codes_kind_payload_consistency",
        "ck_promo_codes_percent_off",
        "ck_promo_codes_validity_window",
    }.issubset(_check_names("promo_codes"))
    assert Base.metadata.tables["promo_codes"].c.code.unique is True

    promo_redemptions = Base.metadata.tables["promo_redemptions"]
    assert promo_redemptions.c.idempotency_key.unique is True
    assert {
        "ck_promo_redemptions_status",
        "ck_promo_redemptions_owner_present",
        "ck_promo_redemptions_applied_has_account",
    }.issubset(_check_names("promo_redemptions"))
    redemption_indexes = {index.name for index in promo_redemptions.indexes}
    assert "idx_promo_redemptions_pending_fingerprint" in redemption_indexes

    ledger = Base.metadata.tables["processed_payment_events"]
    assert [column.name for column in ledger.primary_key.columns] == ["event_id"]
    assert {
        "ck_processed_payment_events_status",
        "ck_processed_payment_events_kind",
    }.issubset(_check_names("processed_payment_events"))
