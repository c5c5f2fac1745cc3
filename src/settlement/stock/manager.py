"""Stock Reservation Manager — atomic inventory accounting per SKU.

Stock Level Model:
    stock_quantity:    Physical units the catalog says are on hand
    reserved_quantity: Units held for orders that are not yet completed
    available:         stock_quantity - reserved_quantity

Reservation lifecycle:
    ACTIVE → CONFIRMED → COMMITTED
    {ACTIVE, CONFIRMED} → RELEASED
    ACTIVE → EXPIRED  (swept after ``reservation_minutes``)

Every counter change is a read-check-swap on the SKU's version. With
concurrency protection on, the swap runs under the SKU's lock so competing
checkouts serialize and the loser sees a plain insufficient-stock rejection.
Without it, a lost swap is retried up to ``max_attempts`` times with
exponential backoff before ConcurrencyError is raised.
"""

import time
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import structlog
from protean.exceptions import ValidationError

from settlement.shared.errors import ConcurrencyError
from settlement.stock.port import (
    Reservation,
    ReservationLine,
    ReservationStatus,
    StockLedger,
    StockLevel,
)

logger = structlog.get_logger(__name__)

_RELEASABLE = {ReservationStatus.ACTIVE, ReservationStatus.CONFIRMED}


@dataclass(frozen=True)
class StockRejection:
    """A reservation that could not be honoured. Not an error."""

    sku_id: str
    requested: int
    available: int
    reason: str = "insufficient_stock"

    @property
    def message(self) -> str:
        if self.reason == "unknown_sku":
            return f"SKU {self.sku_id} is not stocked"
        return f"Insufficient stock for {self.sku_id}: {self.available} available, {self.requested} requested"


class StockReservationManager:
    def __init__(
        self,
        ledger: StockLedger,
        reservation_minutes: int = 30,
        concurrency_protection: bool = True,
        max_attempts: int = 3,
        backoff: float = 0.01,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ledger = ledger
        self.reservation_minutes = reservation_minutes
        self.concurrency_protection = concurrency_protection
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._clock = clock or (lambda: datetime.now(UTC))
        self._sleep = sleep

    # -------------------------------------------------------------------
    # Public contract
    # -------------------------------------------------------------------
    def reserve(self, items: Iterable[dict | ReservationLine], reference: str) -> Reservation | StockRejection:
        """Hold stock for every line, or for none of them."""
        lines = self._normalize(items)
        rejection = self._apply_all([(line.sku_id, 0, line.quantity) for line in lines], check_available=True)
        if rejection is not None:
            logger.info(
                "Stock reservation rejected",
                reference=reference,
                sku_id=rejection.sku_id,
                requested=rejection.requested,
                available=rejection.available,
            )
            return rejection

        now = self._clock()
        reservation = Reservation(
            reservation_id=str(uuid4()),
            reference=reference,
            lines=lines,
            status=ReservationStatus.ACTIVE.value,
            created_at=now,
            expires_at=now + timedelta(minutes=self.reservation_minutes),
        )
        self.ledger.add_reservation(reservation)
        logger.info(
            "Stock reserved",
            reservation_id=reservation.reservation_id,
            reference=reference,
            lines=len(lines),
        )
        return reservation

    def release(self, reservation_id: str, reason: str = "released") -> bool:
        """Give reserved units back. Returns False when there was nothing to release."""
        return self._release(reservation_id, ReservationStatus.RELEASED, reason, _RELEASABLE)

    def confirm(self, reservation_id: str) -> Reservation:
        """Pin a reservation to a confirmed order so it no longer expires."""
        previous = self.ledger.transition_reservation(
            reservation_id, {ReservationStatus.ACTIVE}, ReservationStatus.CONFIRMED
        )
        if previous is None:
            current = self._require(reservation_id)
            if current.status != ReservationStatus.CONFIRMED.value:
                raise ValidationError(
                    {"reservation_id": [f"Cannot confirm reservation in {current.status} state"]}
                )
        return self.ledger.get_reservation(reservation_id)

    def commit(self, reservation_id: str) -> bool:
        """Turn held units into sold units. Returns False if already committed."""
        previous = self.ledger.transition_reservation(reservation_id, _RELEASABLE, ReservationStatus.COMMITTED)
        if previous is None:
            current = self._require(reservation_id)
            if current.status == ReservationStatus.COMMITTED.value:
                return False
            raise ValidationError({"reservation_id": [f"Cannot commit reservation in {current.status} state"]})

        try:
            self._apply_all([(line.sku_id, -line.quantity, -line.quantity) for line in previous.lines])
        except ConcurrencyError:
            self._restore(previous, ReservationStatus.COMMITTED)
            raise

        logger.info("Stock committed", reservation_id=reservation_id, reference=previous.reference)
        return True

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Release ACTIVE reservations whose hold has run out.

        Triggered externally (scheduler or maintenance endpoint).
        """
        as_of = now or self._clock()
        expired = [r for r in self.ledger.reservations(ReservationStatus.ACTIVE) if r.expires_at <= as_of]
        if not expired:
            logger.info("No stale reservations found")
            return 0

        released = 0
        for reservation in expired:
            try:
                if self._release(
                    reservation.reservation_id,
                    ReservationStatus.EXPIRED,
                    "timeout",
                    {ReservationStatus.ACTIVE},
                ):
                    released += 1
            except ConcurrencyError as exc:
                logger.warning(
                    "Failed to release stale reservation",
                    reservation_id=reservation.reservation_id,
                    error=str(exc),
                )

        logger.info("Stale reservation cleanup complete", expired_count=released)
        return released

    def get(self, reservation_id: str) -> Reservation | None:
        return self.ledger.get_reservation(reservation_id)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _normalize(self, items: Iterable[dict | ReservationLine]) -> tuple[ReservationLine, ...]:
        totals: dict[str, int] = {}
        for item in items:
            if isinstance(item, dict):
                item = ReservationLine(sku_id=str(item["sku_id"]), quantity=int(item["quantity"]))
            if item.quantity <= 0:
                raise ValidationError({"quantity": ["Quantity must be positive"]})
            totals[item.sku_id] = totals.get(item.sku_id, 0) + item.quantity
        if not totals:
            raise ValidationError({"items": ["Nothing to reserve"]})
        return tuple(ReservationLine(sku_id=sku, quantity=qty) for sku, qty in sorted(totals.items()))

    def _require(self, reservation_id: str) -> Reservation:
        reservation = self.ledger.get_reservation(reservation_id)
        if reservation is None:
            raise ValidationError({"reservation_id": ["Reservation not found"]})
        return reservation

    def _release(
        self,
        reservation_id: str,
        target: ReservationStatus,
        reason: str,
        allowed: set[ReservationStatus],
    ) -> bool:
        previous = self.ledger.transition_reservation(reservation_id, allowed, target)
        if previous is None:
            self._require(reservation_id)
            return False

        try:
            self._apply_all([(line.sku_id, 0, -line.quantity) for line in previous.lines])
        except ConcurrencyError:
            self._restore(previous, target)
            raise

        logger.info(
            "Stock reservation released",
            reservation_id=reservation_id,
            reference=previous.reference,
            reason=reason,
        )
        return True

    def _restore(self, previous: Reservation, from_status: ReservationStatus) -> None:
        self.ledger.transition_reservation(
            previous.reservation_id, {from_status}, ReservationStatus(previous.status)
        )

    def _guard(self, sku_id: str) -> AbstractContextManager:
        if self.concurrency_protection:
            return self.ledger.lock(sku_id)
        return nullcontext()

    def _apply_all(
        self,
        changes: list[tuple[str, int, int]],
        check_available: bool = False,
    ) -> StockRejection | None:
        """Apply (sku, stock_delta, reserved_delta) changes all-or-nothing."""
        applied: list[tuple[str, int, int]] = []
        try:
            for sku_id, stock_delta, reserved_delta in changes:
                outcome = self._adjust(sku_id, stock_delta, reserved_delta, check_available)
                if isinstance(outcome, StockRejection):
                    self._undo(applied)
                    return outcome
                applied.append((sku_id, stock_delta, reserved_delta))
        except ConcurrencyError:
            self._undo(applied)
            raise
        return None

    def _undo(self, applied: list[tuple[str, int, int]]) -> None:
        for sku_id, stock_delta, reserved_delta in reversed(applied):
            self._adjust(sku_id, -stock_delta, -reserved_delta)

    def _adjust(
        self,
        sku_id: str,
        stock_delta: int,
        reserved_delta: int,
        check_available: bool = False,
    ) -> StockLevel | StockRejection:
        for attempt in range(1, self.max_attempts + 1):
            with self._guard(sku_id):
                level = self.ledger.levels(sku_id)
                if level is None:
                    return StockRejection(sku_id=sku_id, requested=reserved_delta, available=0, reason="unknown_sku")
                if check_available and level.available < reserved_delta:
                    return StockRejection(sku_id=sku_id, requested=reserved_delta, available=level.available)

                stock_quantity = level.stock_quantity + stock_delta
                reserved_quantity = level.reserved_quantity + reserved_delta
                if not 0 <= reserved_quantity <= stock_quantity:
                    raise ValidationError(
                        {
                            "reserved_quantity": [
                                f"Stock counters for {sku_id} would become inconsistent: "
                                f"{reserved_quantity} reserved of {stock_quantity}"
                            ]
                        }
                    )

                if self.ledger.compare_and_swap(sku_id, level.version, stock_quantity, reserved_quantity):
                    return StockLevel(
                        sku_id=sku_id,
                        stock_quantity=stock_quantity,
                        reserved_quantity=reserved_quantity,
                        version=level.version + 1,
                    )

            logger.debug("Stock version conflict", sku_id=sku_id, attempt=attempt)
            if attempt < self.max_attempts:
                self._sleep(self.backoff * 2 ** (attempt - 1))

        raise ConcurrencyError(sku_id, self.max_attempts)
