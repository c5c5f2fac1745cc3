"""Application tests for confirmation, weighing, readiness, dispatch and completion."""

import json
from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError

from settlement.order.completion import CompleteOrder
from settlement.order.confirmation import ConfirmOrder
from settlement.order.creation import PlaceOrder
from settlement.order.delivery import RecordDeliveryStatus
from settlement.order.fulfillment import MarkReady, StartProcessing
from settlement.order.order import Order, OrderStatus
from settlement.order.weights import ConfirmWeights
from settlement.payment.capture import ConfirmCashPayment
from settlement.shared.errors import DispatchUnavailable
from settlement.stock import get_stock_manager
from settlement.stock.port import ReservationStatus


def _process(command):
    return current_domain.process(command, asynchronous=False)


def _order(order_id):
    return current_domain.repository_for(Order).get(order_id)


def _place(items, **overrides):
    data = {
        "customer_name": "Awa Koné",
        "customer_phone": "07 07 07 07 07",
        "delivery_method": "delivery",
        "delivery_address": "Marcory Zone 4",
        "delivery_instructions": "Portail bleu",
        "payment_method": "cash",
        "items": json.dumps(items),
    }
    data.update(overrides)
    return _process(PlaceOrder(**data))


def _to_processing(order_id):
    _process(ConfirmOrder(order_id=order_id))
    _process(StartProcessing(order_id=order_id))


def _variable_item_id(order_id):
    return next(str(item.id) for item in _order(order_id).items if item.is_variable_weight)


class TestConfirmation:
    def test_confirmation_pins_reservation(self, shop):
        order_id = _place([{"sku_id": "sku-rice", "quantity": 1}])
        _process(ConfirmOrder(order_id=order_id))

        order = _order(order_id)
        assert order.status == OrderStatus.CONFIRMED.value
        assert shop["ledger"].get_reservation(order.reservation_id).status == ReservationStatus.CONFIRMED.value

        later = datetime.now(UTC) + timedelta(hours=2)
        assert get_stock_manager().sweep_expired(now=later) == 0
        assert shop["ledger"].levels("sku-rice").reserved_quantity == 1

    def test_expired_hold_blocks_confirmation(self, shop):
        order_id = _place([{"sku_id": "sku-rice", "quantity": 1}])
        get_stock_manager().sweep_expired(now=datetime.now(UTC) + timedelta(minutes=31))

        with pytest.raises(ValidationError):
            _process(ConfirmOrder(order_id=order_id))
        assert _order(order_id).status == OrderStatus.PENDING.value
        assert shop["ledger"].levels("sku-rice").reserved_quantity == 0


class TestWeighing:
    def test_weights_reprice_the_order(self, shop):
        order_id = _place([{"sku_id": "sku-fish", "quantity": 2, "estimated_weight_grams": 800}])
        _to_processing(order_id)

        final_total = _process(
            ConfirmWeights(order_id=order_id, weights=json.dumps({_variable_item_id(order_id): 1800}))
        )

        order = _order(order_id)
        fish = order.items[0]
        assert fish.actual_weight_grams == 1800
        assert fish.final_price == 5400.0
        assert fish.weight_deviation == pytest.approx(-0.0625)
        assert final_total == 5400.0 + 2000.0
        assert order.final_total == final_total
        assert order.weight_review_required is False

    def test_weighing_the_estimate_lands_below_the_margin(self, shop):
        # 2 x 800 g at 3000/kg was pre-authorized at 5760 with the 1.2 margin.
        order_id = _place([{"sku_id": "sku-fish", "quantity": 2, "estimated_weight_grams": 800}])
        _to_processing(order_id)

        _process(ConfirmWeights(order_id=order_id, weights=json.dumps({_variable_item_id(order_id): 1600})))

        fish = _order(order_id).items[0]
        assert fish.final_price == 4800.0
        assert fish.weight_deviation == pytest.approx(-1 / 6, abs=1e-3)
        assert fish.requires_review is False

    def test_out_of_range_weight_rejects_the_batch(self, shop):
        order_id = _place(
            [
                {"sku_id": "sku-fish", "quantity": 1, "estimated_weight_grams": 1000},
                {"sku_id": "sku-beef", "quantity": 1, "estimated_weight_grams": 1000},
            ]
        )
        _to_processing(order_id)
        ids = {str(item.sku_id): str(item.id) for item in _order(order_id).items}

        with pytest.raises(ValidationError) as exc:
            _process(
                ConfirmWeights(
                    order_id=order_id,
                    weights=json.dumps({ids["sku-beef"]: 1200, ids["sku-fish"]: 50}),
                )
            )
        assert "weights" in exc.value.messages
        assert all(item.final_price is None for item in _order(order_id).items)

    def test_large_deviation_flags_review(self, shop):
        order_id = _place([{"sku_id": "sku-beef", "quantity": 1, "estimated_weight_grams": 1000}])
        _to_processing(order_id)
        _process(ConfirmWeights(order_id=order_id, weights=json.dumps({_variable_item_id(order_id): 2500})))

        order = _order(order_id)
        assert order.weight_review_required is True
        assert order.final_total == 10000.0 + 2000.0


class TestReadiness:
    def test_delivery_order_dispatches_courier(self, shop):
        order_id = _place([{"sku_id": "sku-rice", "quantity": 3}])
        _to_processing(order_id)
        _process(MarkReady(order_id=order_id))

        order = _order(order_id)
        assert order.status == OrderStatus.READY.value
        assert order.delivery_id.startswith("dlv-")
        assert order.tracking_url.endswith(order.delivery_id)

        payload = shop["courier"].calls[0]["payload"]
        assert payload["order_id"] == order.order_number
        assert payload["dropoff"]["contact"]["phone"] == "+2250707070707"
        assert payload["dropoff"]["comment"] == "Portail bleu"
        assert payload["payment"] == {"type": "cash", "amount": order.total_amount}
        assert payload["items"][0]["weight"] == 15.0
        assert payload["vehicle_type"] == "bike"

    def test_heavy_prepaid_order_payload(self, shop):
        order_id = _place([{"sku_id": "sku-rice", "quantity": 11}], payment_method="card")
        _to_processing(order_id)
        _process(MarkReady(order_id=order_id))

        payload = shop["courier"].calls[0]["payload"]
        assert payload["payment"] == {"type": "prepaid", "amount": 0}
        assert payload["vehicle_type"] == "car"

    def test_courier_failure_blocks_readiness(self, shop):
        order_id = _place([{"sku_id": "sku-rice", "quantity": 1}])
        _to_processing(order_id)
        shop["courier"].configure(should_succeed=False)

        with pytest.raises(DispatchUnavailable) as exc:
            _process(MarkReady(order_id=order_id))
        assert exc.value.retryable is True

        order = _order(order_id)
        assert order.status == OrderStatus.PROCESSING.value
        assert order.delivery_id is None

    def test_pickup_order_needs_no_courier(self, shop):
        tomorrow = (datetime.now(UTC).date() + timedelta(days=1)).isoformat()
        order_id = _place(
            [{"sku_id": "sku-rice", "quantity": 1}],
            delivery_method="pickup",
            delivery_address=None,
            pickup_date=tomorrow,
            pickup_time_slot="12:00-15:00",
        )
        _to_processing(order_id)
        _process(MarkReady(order_id=order_id))

        assert _order(order_id).status == OrderStatus.READY.value
        assert shop["courier"].calls == []


class TestCompletion:
    def test_completion_commits_stock(self, shop):
        order_id = _place([{"sku_id": "sku-rice", "quantity": 2}])
        _to_processing(order_id)
        _process(MarkReady(order_id=order_id))
        _process(ConfirmCashPayment(order_id=order_id))
        _process(CompleteOrder(order_id=order_id))

        order = _order(order_id)
        assert order.status == OrderStatus.COMPLETED.value
        level = shop["ledger"].levels("sku-rice")
        assert level.stock_quantity == 18
        assert level.reserved_quantity == 0
        assert shop["ledger"].get_reservation(order.reservation_id).status == ReservationStatus.COMMITTED.value

    def test_unpaid_order_cannot_complete(self, shop):
        order_id = _place([{"sku_id": "sku-rice", "quantity": 2}])
        _to_processing(order_id)
        _process(MarkReady(order_id=order_id))

        with pytest.raises(ValidationError):
            _process(CompleteOrder(order_id=order_id))
        assert shop["ledger"].levels("sku-rice").stock_quantity == 20


class TestDeliveryStatus:
    def _dispatched(self):
        order_id = _place([{"sku_id": "sku-rice", "quantity": 1}])
        _to_processing(order_id)
        _process(MarkReady(order_id=order_id))
        return order_id, _order(order_id).delivery_id

    def test_status_update_is_recorded(self, shop):
        order_id, delivery_id = self._dispatched()
        applied = _process(
            RecordDeliveryStatus(delivery_id=delivery_id, status="picked_up", estimated_arrival="20 min")
        )

        assert applied is True
        order = _order(order_id)
        assert order.delivery_status == "picked_up"
        assert order.delivery_eta == "20 min"

    def test_repeated_status_is_ignored(self, shop):
        _, delivery_id = self._dispatched()
        _process(RecordDeliveryStatus(delivery_id=delivery_id, status="picked_up"))

        assert _process(RecordDeliveryStatus(delivery_id=delivery_id, status="picked_up")) is False

    def test_status_the_delivery_moved_past_is_ignored(self, shop):
        order_id, delivery_id = self._dispatched()
        applied = [
            _process(RecordDeliveryStatus(delivery_id=delivery_id, status=status))
            for status in ("picked_up", "delivered", "picked_up")
        ]

        assert applied == [True, True, False]
        assert _order(order_id).delivery_status == "delivered"

    def test_earlier_status_keeps_the_current_eta(self, shop):
        order_id, delivery_id = self._dispatched()
        _process(RecordDeliveryStatus(delivery_id=delivery_id, status="delivering", estimated_arrival="5 min"))

        stale = RecordDeliveryStatus(delivery_id=delivery_id, status="accepted", estimated_arrival="40 min")
        assert _process(stale) is False
        order = _order(order_id)
        assert order.delivery_status == "delivering"
        assert order.delivery_eta == "5 min"

    def test_unlisted_status_is_recorded_until_the_delivery_ends(self, shop):
        order_id, delivery_id = self._dispatched()

        assert _process(RecordDeliveryStatus(delivery_id=delivery_id, status="courier_waiting")) is True
        assert _order(order_id).delivery_status == "courier_waiting"

        _process(RecordDeliveryStatus(delivery_id=delivery_id, status="delivered"))
        assert _process(RecordDeliveryStatus(delivery_id=delivery_id, status="courier_waiting")) is False

    def test_unknown_delivery(self, shop):
        with pytest.raises(ObjectNotFoundError):
            _process(RecordDeliveryStatus(delivery_id="dlv-ghost", status="delivered"))
