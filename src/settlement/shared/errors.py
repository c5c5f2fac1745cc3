"""Settlement exceptions that are not plain validation failures."""


class SettlementError(Exception):
    """Base class for settlement errors."""


class ConcurrencyError(SettlementError):
    """Stock counters kept changing underneath a reservation attempt."""

    def __init__(self, sku_id: str, attempts: int):
        self.sku_id = sku_id
        self.attempts = attempts
        super().__init__(f"Concurrent modification of stock for {sku_id} after {attempts} attempts")


class DispatchUnavailable(SettlementError):
    """The delivery dispatcher could not book, track or cancel a courier."""

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class InvalidSignature(SettlementError):
    """A webhook body did not match its signature."""


class CallbackRejected(SettlementError):
    """A payment callback conflicts with what the ledger already applied."""
