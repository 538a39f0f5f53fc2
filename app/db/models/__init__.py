from app.db.models.accounts import Account
from app.db.models.processed_payment_events import ProcessedPaymentEvent
from app.db.models.promo_codes import PromoCode
from app.db.models.promo_redemptions import PromoRedemption

__all__ = [
    "Account",
    "ProcessedPaymentEvent",
    "PromoCode",
    "PromoRedemption",
]
