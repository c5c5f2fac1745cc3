"""Stock ledger port — the single owner of SKU stock counters.

Only the StockReservationManager writes through this interface. Counter
updates are compare-and-swap on a per-SKU version so that concurrent
checkouts can never push ``reserved_quantity`` above ``stock_quantity``.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ReservationStatus(Enum):
    ACTIVE = "Active"
    CONFIRMED = "Confirmed"
    RELEASED = "Released"
    EXPIRED = "Expired"
    COMMITTED = "Committed"


@dataclass(frozen=True)
class StockLevel:
    """Counters for one SKU at a given version."""

    sku_id: str
    stock_quantity: int
    reserved_quantity: int
    version: int = 0

    @property
    def available(self) -> int:
        return self.stock_quantity - self.reserved_quantity


@dataclass(frozen=True)
class ReservationLine:
    sku_id: str
    quantity: int


@dataclass(frozen=True)
class Reservation:
    """A time-bounded hold against stock for one order."""

    reservation_id: str
    reference: str
    lines: tuple[ReservationLine, ...]
    status: str
    created_at: datetime
    expires_at: datetime


class StockLedger(ABC):
    """Abstract interface for stock counter and reservation storage."""

    @abstractmethod
    def levels(self, sku_id: str) -> StockLevel | None:
        """Current counters for a SKU, or None when it is not stocked."""
        ...

    @abstractmethod
    def compare_and_swap(
        self,
        sku_id: str,
        expected_version: int,
        stock_quantity: int,
        reserved_quantity: int,
    ) -> bool:
        """Write new counters only if the stored version still matches.

        Returns False when another writer got there first.
        """
        ...

    @abstractmethod
    def lock(self, sku_id: str) -> AbstractContextManager:
        """Exclusive per-SKU lock (row-level lock equivalent)."""
        ...

    @abstractmethod
    def add_reservation(self, reservation: Reservation) -> None: ...

    @abstractmethod
    def get_reservation(self, reservation_id: str) -> Reservation | None: ...

    @abstractmethod
    def transition_reservation(
        self,
        reservation_id: str,
        allowed: set[ReservationStatus],
        target: ReservationStatus,
    ) -> Reservation | None:
        """Atomically move a reservation to ``target`` if its status is allowed.

        Returns the reservation as it was before the change, or None when the
        reservation is missing or in another status.
        """
        ...

    @abstractmethod
    def reservations(self, status: ReservationStatus | None = None) -> list[Reservation]: ...
