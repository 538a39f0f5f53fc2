class PromoError(Exception):
    pass


class PromoInvalidError(PromoError):
    pass


class PromoNotFoundError(PromoError):
    pass


class PromoExpiredError(PromoNotFoundError):
    pass


class PromoDepletedError(PromoNotFoundError):
    pass


class PromoAlreadyRedeemedError(PromoError):
    pass
