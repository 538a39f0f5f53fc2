class ReconcilerError(Exception):
    pass


class StoreUnavailableError(ReconcilerError):
    pass


class MalformedPaymentEventError(ReconcilerError):
    pass


class PaymentEventNotReplayableError(ReconcilerError):
    pass
