from app.db.repo.accounts_repo import AccountsRepo
from app.db.repo.processed_payment_events_repo import ProcessedPaymentEventsRepo
from app.db.repo.promo_repo import PromoRepo

__all__ = [
    "AccountsRepo",
    "ProcessedPaymentEventsRepo",
    "PromoRepo",
]
