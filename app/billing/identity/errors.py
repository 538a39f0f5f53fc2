class IdentityError(Exception):
    pass


class AccountNotFoundError(IdentityError):
    pass


class AmbiguousMatchError(IdentityError):
    pass
