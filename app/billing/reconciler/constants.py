LEDGER_STATUS_PROCESSED = "PROCESSED"
LEDGER_STATUS_FAILED = "FAILED"

SUBSCRIPTION_STATUS_FREE = "FREE"
SUBSCRIPTION_STATUS_PREMIUM = "PREMIUM"

# Provider lifecycle states that end entitlement immediately.
TERMINAL_PROVIDER_STATUSES = frozenset({"canceled", "unpaid", "incomplete_expired"})

PROVIDER_EVENT_CHECKOUT_COMPLETED = "checkout.session.completed"
PROVIDER_EVENT_SUBSCRIPTION_CREATED = "customer.subscription.created"
PROVIDER_EVENT_SUBSCRIPTION_UPDATED = "customer.subscription.updated"
PROVIDER_EVENT_SUBSCRIPTION_DELETED = "customer.subscription.deleted"

PLAN_ANNUAL = "annual"
PLAN_MONTHLY = "monthly"

FAILURE_REASON_ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
FAILURE_REASON_AMBIGUOUS_MATCH = "AMBIGUOUS_MATCH"
