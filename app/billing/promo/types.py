from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class ModificationType(str, Enum):
    TRIAL_EXTENSION = "trial_extension"
    DISCOUNT = "discount"


@dataclass(frozen=True, slots=True)
class PromoContext:
    order_amount: int = 0
    account_id: UUID | None = None
    fingerprint: str | None = None


@dataclass(frozen=True, slots=True)
class Modification:
    type: ModificationType
    months: int | None = None
    percent_off: int | None = None
    amount_off: int | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"type": self.type.value}
        if self.type == ModificationType.TRIAL_EXTENSION:
            payload["months"] = self.months
        else:
            payload["percent_off"] = self.percent_off
            payload["amount_off"] = self.amount_off
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, object]) -> Modification:
        modification_type = ModificationType(str(payload["type"]))
        if modification_type == ModificationType.TRIAL_EXTENSION:
            return cls(type=modification_type, months=int(payload["months"]))  # type: ignore[arg-type]
        percent_off = payload.get("percent_off")
        amount_off = payload.get("amount_off")
        return cls(
            type=modification_type,
            percent_off=int(percent_off) if percent_off is not None else None,  # type: ignore[arg-type]
            amount_off=int(amount_off) if amount_off is not None else None,  # type: ignore[arg-type]
        )


@dataclass(slots=True)
class EligibilityResult:
    promo_code_id: int
    code: str
    modification: Modification


@dataclass(slots=True)
class PromoApplyResult:
    redemption_id: UUID
    status: str
    modification: Modification
    idempotent_replay: bool
    account_id: UUID | None = None
    subscription_status: str | None = None
    subscription_end_date: datetime | None = None

    @property
    def pending(self) -> bool:
        return self.status == "PENDING"

    @property
    def applied(self) -> bool:
        return self.status == "APPLIED"


@dataclass(slots=True)
class PendingClaimResult:
    redemption_id: UUID
    promo_code_id: int
    status: str
    reject_reason: str | None = None
    modification: Modification | None = None
