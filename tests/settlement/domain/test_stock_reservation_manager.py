"""Tests for StockReservationManager — all-or-nothing holds, release, commit, expiry."""

import threading
from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import ValidationError

from settlement.shared.errors import ConcurrencyError
from settlement.stock.manager import StockRejection, StockReservationManager
from settlement.stock.memory_adapter import InMemoryStockLedger
from settlement.stock.port import Reservation, ReservationStatus


class _Clock:
    def __init__(self):
        self.now = datetime(2026, 1, 15, 10, 0, tzinfo=UTC)

    def __call__(self):
        return self.now

    def advance(self, minutes):
        self.now += timedelta(minutes=minutes)


class _AlwaysConflictingLedger(InMemoryStockLedger):
    """Every swap loses, as if another writer always got there first."""

    def compare_and_swap(self, sku_id, expected_version, stock_quantity, reserved_quantity):
        return False


def _ledger(**levels):
    ledger = InMemoryStockLedger()
    for sku_id, quantity in levels.items():
        ledger.seed(sku_id, quantity)
    return ledger


def _manager(ledger, **kwargs):
    kwargs.setdefault("sleep", lambda _seconds: None)
    return StockReservationManager(ledger, **kwargs)


def _reserved(ledger, sku_id):
    return ledger.levels(sku_id).reserved_quantity


class TestReserve:
    def test_successful_reservation_holds_every_line(self):
        ledger = _ledger(rice=10, oil=5)
        reservation = _manager(ledger).reserve(
            [{"sku_id": "rice", "quantity": 3}, {"sku_id": "oil", "quantity": 5}],
            reference="CMD-1",
        )

        assert isinstance(reservation, Reservation)
        assert reservation.status == ReservationStatus.ACTIVE.value
        assert _reserved(ledger, "rice") == 3
        assert _reserved(ledger, "oil") == 5
        assert ledger.levels("rice").available == 7

    def test_reservation_expires_after_configured_minutes(self):
        clock = _Clock()
        reservation = _manager(_ledger(rice=10), reservation_minutes=30, clock=clock).reserve(
            [{"sku_id": "rice", "quantity": 1}], reference="CMD-1"
        )
        assert reservation.expires_at == clock.now + timedelta(minutes=30)

    def test_insufficient_stock_rejects_without_holding_anything(self):
        ledger = _ledger(rice=10, oil=2)
        result = _manager(ledger).reserve(
            [{"sku_id": "rice", "quantity": 3}, {"sku_id": "oil", "quantity": 5}],
            reference="CMD-1",
        )

        assert isinstance(result, StockRejection)
        assert result.sku_id == "oil"
        assert result.requested == 5
        assert result.available == 2
        assert _reserved(ledger, "rice") == 0
        assert _reserved(ledger, "oil") == 0

    def test_unknown_sku_is_rejected(self):
        ledger = _ledger(rice=10)
        result = _manager(ledger).reserve([{"sku_id": "ghost", "quantity": 1}], reference="CMD-1")

        assert isinstance(result, StockRejection)
        assert result.reason == "unknown_sku"
        assert "not stocked" in result.message

    def test_duplicate_lines_are_merged(self):
        ledger = _ledger(rice=4)
        result = _manager(ledger).reserve(
            [{"sku_id": "rice", "quantity": 3}, {"sku_id": "rice", "quantity": 2}],
            reference="CMD-1",
        )
        assert isinstance(result, StockRejection)
        assert result.requested == 5

    def test_exact_available_quantity_can_be_reserved(self):
        ledger = _ledger(rice=4)
        assert isinstance(_manager(ledger).reserve([{"sku_id": "rice", "quantity": 4}], "CMD-1"), Reservation)
        assert ledger.levels("rice").available == 0

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_non_positive_quantity_is_invalid(self, quantity):
        with pytest.raises(ValidationError):
            _manager(_ledger(rice=4)).reserve([{"sku_id": "rice", "quantity": quantity}], "CMD-1")

    def test_empty_request_is_invalid(self):
        with pytest.raises(ValidationError):
            _manager(_ledger(rice=4)).reserve([], "CMD-1")


class TestRelease:
    def test_release_returns_units(self):
        ledger = _ledger(rice=10)
        manager = _manager(ledger)
        reservation = manager.reserve([{"sku_id": "rice", "quantity": 4}], "CMD-1")

        assert manager.release(reservation.reservation_id) is True
        assert _reserved(ledger, "rice") == 0
        assert manager.get(reservation.reservation_id).status == ReservationStatus.RELEASED.value

    def test_release_is_idempotent(self):
        ledger = _ledger(rice=10)
        manager = _manager(ledger)
        reservation = manager.reserve([{"sku_id": "rice", "quantity": 4}], "CMD-1")

        manager.release(reservation.reservation_id)
        assert manager.release(reservation.reservation_id) is False
        assert _reserved(ledger, "rice") == 0

    def test_release_of_confirmed_reservation(self):
        ledger = _ledger(rice=10)
        manager = _manager(ledger)
        reservation = manager.reserve([{"sku_id": "rice", "quantity": 4}], "CMD-1")
        manager.confirm(reservation.reservation_id)

        assert manager.release(reservation.reservation_id) is True
        assert _reserved(ledger, "rice") == 0

    def test_release_of_unknown_reservation_is_invalid(self):
        with pytest.raises(ValidationError):
            _manager(_ledger(rice=10)).release("nope")


class TestCommit:
    def test_commit_consumes_stock_and_hold(self):
        ledger = _ledger(rice=10)
        manager = _manager(ledger)
        reservation = manager.reserve([{"sku_id": "rice", "quantity": 4}], "CMD-1")

        assert manager.commit(reservation.reservation_id) is True
        level = ledger.levels("rice")
        assert level.stock_quantity == 6
        assert level.reserved_quantity == 0
        assert level.available == 6

    def test_commit_twice_is_a_no_op(self):
        ledger = _ledger(rice=10)
        manager = _manager(ledger)
        reservation = manager.reserve([{"sku_id": "rice", "quantity": 4}], "CMD-1")
        manager.commit(reservation.reservation_id)

        assert manager.commit(reservation.reservation_id) is False
        assert ledger.levels("rice").stock_quantity == 6

    def test_released_reservation_cannot_be_committed(self):
        manager = _manager(_ledger(rice=10))
        reservation = manager.reserve([{"sku_id": "rice", "quantity": 4}], "CMD-1")
        manager.release(reservation.reservation_id)

        with pytest.raises(ValidationError):
            manager.commit(reservation.reservation_id)


class TestConfirm:
    def test_confirm_pins_reservation(self):
        manager = _manager(_ledger(rice=10))
        reservation = manager.reserve([{"sku_id": "rice", "quantity": 1}], "CMD-1")

        confirmed = manager.confirm(reservation.reservation_id)
        assert confirmed.status == ReservationStatus.CONFIRMED.value
        assert manager.confirm(reservation.reservation_id).status == ReservationStatus.CONFIRMED.value

    def test_expired_reservation_cannot_be_confirmed(self):
        clock = _Clock()
        manager = _manager(_ledger(rice=10), clock=clock)
        reservation = manager.reserve([{"sku_id": "rice", "quantity": 1}], "CMD-1")
        clock.advance(31)
        manager.sweep_expired()

        with pytest.raises(ValidationError):
            manager.confirm(reservation.reservation_id)


class TestSweepExpired:
    def test_only_expired_active_reservations_are_released(self):
        clock = _Clock()
        ledger = _ledger(rice=10)
        manager = _manager(ledger, reservation_minutes=30, clock=clock)
        stale = manager.reserve([{"sku_id": "rice", "quantity": 2}], "CMD-1")
        pinned = manager.reserve([{"sku_id": "rice", "quantity": 3}], "CMD-2")
        manager.confirm(pinned.reservation_id)
        clock.advance(20)
        fresh = manager.reserve([{"sku_id": "rice", "quantity": 1}], "CMD-3")
        clock.advance(15)

        assert manager.sweep_expired() == 1
        assert manager.get(stale.reservation_id).status == ReservationStatus.EXPIRED.value
        assert manager.get(pinned.reservation_id).status == ReservationStatus.CONFIRMED.value
        assert manager.get(fresh.reservation_id).status == ReservationStatus.ACTIVE.value
        assert _reserved(ledger, "rice") == 4

    def test_sweep_is_idempotent(self):
        clock = _Clock()
        manager = _manager(_ledger(rice=10), clock=clock)
        manager.reserve([{"sku_id": "rice", "quantity": 2}], "CMD-1")
        clock.advance(45)

        assert manager.sweep_expired() == 1
        assert manager.sweep_expired() == 0


class TestConcurrency:
    def test_version_conflicts_exhaust_attempts(self):
        ledger = _AlwaysConflictingLedger()
        ledger.seed("rice", 10)
        delays = []
        manager = StockReservationManager(
            ledger,
            concurrency_protection=False,
            max_attempts=3,
            backoff=0.01,
            sleep=delays.append,
        )

        with pytest.raises(ConcurrencyError) as exc:
            manager.reserve([{"sku_id": "rice", "quantity": 1}], "CMD-1")
        assert exc.value.sku_id == "rice"
        assert delays == [0.01, 0.02]

    @pytest.mark.parametrize("protected", [True, False])
    def test_concurrent_checkouts_never_oversell(self, protected):
        ledger = _ledger(beef=10)
        manager = StockReservationManager(ledger, concurrency_protection=protected, max_attempts=50, backoff=0)
        outcomes = []
        start = threading.Barrier(25)

        def checkout(n):
            start.wait()
            try:
                outcomes.append(manager.reserve([{"sku_id": "beef", "quantity": 1}], f"CMD-{n}"))
            except ConcurrencyError as exc:
                outcomes.append(exc)

        threads = [threading.Thread(target=checkout, args=(n,)) for n in range(25)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        successes = [o for o in outcomes if isinstance(o, Reservation)]
        level = ledger.levels("beef")
        assert len(outcomes) == 25
        assert level.reserved_quantity == len(successes)
        assert 0 <= level.reserved_quantity <= level.stock_quantity
        if protected:
            assert len(successes) == 10
