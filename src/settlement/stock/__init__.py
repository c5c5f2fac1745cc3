"""Stock ledger and reservation manager factory.

get_stock_ledger() returns the process-wide ledger (InMemoryStockLedger by
default); get_stock_manager() wraps it with the configured reservation policy.
"""

from settlement.config import get_settings
from settlement.stock.manager import StockReservationManager
from settlement.stock.memory_adapter import InMemoryStockLedger
from settlement.stock.port import StockLedger

_current_ledger: StockLedger | None = None


def get_stock_ledger() -> StockLedger:
    """Return the current stock ledger. Defaults to InMemoryStockLedger."""
    global _current_ledger
    if _current_ledger is None:
        _current_ledger = InMemoryStockLedger()
    return _current_ledger


def set_stock_ledger(ledger: StockLedger) -> None:
    """Override the active stock ledger (useful for tests)."""
    global _current_ledger
    _current_ledger = ledger


def reset_stock_ledger() -> None:
    """Reset to default stock ledger."""
    global _current_ledger
    _current_ledger = None


def get_stock_manager() -> StockReservationManager:
    """Build a reservation manager over the current ledger and settings."""
    settings = get_settings()
    return StockReservationManager(
        get_stock_ledger(),
        reservation_minutes=settings.reserve_stock_duration,
        concurrency_protection=settings.concurrency_protection,
        max_attempts=settings.stock_max_attempts,
        backoff=settings.stock_retry_backoff,
    )
