PROMO_KIND_FREE_SUBSCRIPTION = "FREE_SUBSCRIPTION"
PROMO_KIND_DISCOUNT_PERCENT = "DISCOUNT_PERCENT"

REDEMPTION_STATUS_PENDING = "PENDING"
REDEMPTION_STATUS_APPLIED = "APPLIED"
REDEMPTION_STATUS_REJECTED = "REJECTED"

REJECT_REASON_ALREADY_REDEEMED = "ALREADY_REDEEMED"
REJECT_REASON_DEPLETED = "DEPLETED"
REJECT_REASON_NOT_FOUND = "NOT_FOUND"

PROMO_GRANT_DEFAULT_PLAN = "monthly"
