"""Thread-safe in-memory stock ledger for development and testing."""

import threading
from contextlib import AbstractContextManager
from dataclasses import replace

from settlement.stock.port import Reservation, ReservationStatus, StockLedger, StockLevel


class InMemoryStockLedger(StockLedger):
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._levels: dict[str, StockLevel] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._reservations: dict[str, Reservation] = {}

    def seed(self, sku_id: str, stock_quantity: int, reserved_quantity: int = 0) -> None:
        """Provision counters for a SKU (catalog-side stock intake)."""
        with self._guard:
            current = self._levels.get(sku_id)
            version = current.version + 1 if current else 0
            self._levels[sku_id] = StockLevel(
                sku_id=sku_id,
                stock_quantity=stock_quantity,
                reserved_quantity=reserved_quantity,
                version=version,
            )

    def levels(self, sku_id: str) -> StockLevel | None:
        with self._guard:
            return self._levels.get(sku_id)

    def compare_and_swap(
        self,
        sku_id: str,
        expected_version: int,
        stock_quantity: int,
        reserved_quantity: int,
    ) -> bool:
        with self._guard:
            current = self._levels.get(sku_id)
            if current is None or current.version != expected_version:
                return False
            self._levels[sku_id] = StockLevel(
                sku_id=sku_id,
                stock_quantity=stock_quantity,
                reserved_quantity=reserved_quantity,
                version=expected_version + 1,
            )
            return True

    def lock(self, sku_id: str) -> AbstractContextManager:
        with self._guard:
            return self._locks.setdefault(sku_id, threading.Lock())

    def add_reservation(self, reservation: Reservation) -> None:
        with self._guard:
            self._reservations[reservation.reservation_id] = reservation

    def get_reservation(self, reservation_id: str) -> Reservation | None:
        with self._guard:
            return self._reservations.get(reservation_id)

    def transition_reservation(
        self,
        reservation_id: str,
        allowed: set[ReservationStatus],
        target: ReservationStatus,
    ) -> Reservation | None:
        with self._guard:
            current = self._reservations.get(reservation_id)
            if current is None or ReservationStatus(current.status) not in allowed:
                return None
            self._reservations[reservation_id] = replace(current, status=target.value)
            return current

    def reservations(self, status: ReservationStatus | None = None) -> list[Reservation]:
        with self._guard:
            items = list(self._reservations.values())
        if status is None:
            return items
        return [r for r in items if r.status == status.value]
