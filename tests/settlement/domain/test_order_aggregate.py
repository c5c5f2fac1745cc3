"""Tests for the Order aggregate — totals, state machine, weights and payment projection."""

import json

import pytest
from protean.exceptions import ValidationError

from settlement.order.events import (
    CancellationParked,
    OrderCancelled,
    OrderConfirmed,
    OrderPlaced,
    PaymentAuthorized,
    PaymentRefunded,
    WeightsConfirmed,
)
from settlement.order.order import Order, OrderStatus, PaymentStatus
from settlement.weighing.reconciliation import ReconciledItem

FIXED_LINE = {
    "sku_id": "sku-rice",
    "product_name": "Riz parfumé 5kg",
    "unit_price": 6500.0,
    "quantity": 2,
    "subtotal": 13000.0,
    "unit_weight_grams": 5000,
}

VARIABLE_LINE = {
    "sku_id": "sku-beef",
    "product_name": "Boeuf",
    "unit": "kg",
    "unit_price": 4000.0,
    "quantity": 1,
    "is_variable_weight": True,
    "min_weight_grams": 300,
    "max_weight_grams": 3000,
    "estimated_weight_grams": 1500,
    "estimated_quantity": 1.5,
    "estimated_price": 7200.0,
    "subtotal": 6000.0,
}


def _place(items=None, delivery_fee=1000.0, payment_method="card"):
    return Order.place(
        order_number="CMD-20260115-ABC123",
        customer={"name": "Awa Koné", "phone": "0707070707"},
        delivery_method="delivery",
        payment_method=payment_method,
        items_data=items or [FIXED_LINE],
        delivery_fee=delivery_fee,
        reservation_id="res-1",
        delivery_address="Cocody",
    )


def _variable_item(order):
    return next(item for item in order.items if item.is_variable_weight)


def _weighed(order, grams, final_price, requires_review=False):
    item = _variable_item(order)
    return ReconciledItem(
        item_id=str(item.id),
        actual_weight_grams=grams,
        final_quantity=grams / 1000,
        final_price=final_price,
        deviation=0.0,
        requires_review=requires_review,
    )


class TestPlacement:
    def test_fixed_weight_totals(self):
        order = _place()

        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.subtotal == 13000.0
        assert order.total_amount == 14000.0
        assert order.estimated_total is None
        assert order.amount_due == 14000.0
        assert order.authorization_amount == 14000.0

    def test_variable_weight_lines_produce_estimated_total(self):
        order = _place(items=[FIXED_LINE, VARIABLE_LINE])

        assert order.subtotal == 19000.0
        assert order.total_amount == 20000.0
        assert order.estimated_total == 13000.0 + 7200.0 + 1000.0
        assert order.authorization_amount == 21200.0
        assert order.final_total is None

    def test_placed_event(self):
        order = _place()
        event = order._events[-1]

        assert isinstance(event, OrderPlaced)
        assert event.order_number == "CMD-20260115-ABC123"
        assert event.total_amount == 14000.0
        assert json.loads(event.items)[0]["sku_id"] == "sku-rice"


class TestStateMachine:
    def test_happy_path(self):
        order = _place(payment_method="cash")
        order.confirm()
        order.start_processing()
        order.mark_ready()
        order.record_capture(order.amount_due)
        order.complete()

        assert order.status == OrderStatus.COMPLETED.value
        assert order.completed_at is not None

    def test_confirm_raises_event(self):
        order = _place()
        order._events.clear()
        order.confirm()
        assert isinstance(order._events[-1], OrderConfirmed)

    @pytest.mark.parametrize("step", ["start_processing", "mark_ready", "complete"])
    def test_cannot_skip_states(self, step):
        order = _place()
        with pytest.raises(ValidationError):
            getattr(order, step)()

    def test_completion_requires_payment(self):
        order = _place()
        order.confirm()
        order.start_processing()
        order.mark_ready()

        with pytest.raises(ValidationError) as exc:
            order.complete()
        assert "payment_status" in exc.value.messages

    def test_completed_order_cannot_be_cancelled(self):
        order = _place(payment_method="cash")
        order.confirm()
        order.start_processing()
        order.mark_ready()
        order.record_capture(order.amount_due)
        order.complete()

        with pytest.raises(ValidationError):
            order.begin_cancellation("too late")

    def test_cancellation_resumes_while_cancelling(self):
        order = _place()
        order.begin_cancellation("customer request")
        order.begin_cancellation(None)

        assert order.status == OrderStatus.CANCELLING.value
        assert order.cancellation_reason == "customer request"

    def test_parked_then_finished_cancellation(self):
        order = _place()
        order.begin_cancellation("customer request")
        order.park_cancellation([{"step": "payment", "error": "gateway down"}])

        assert isinstance(order._events[-1], CancellationParked)
        assert order.pending_failures == [{"step": "payment", "error": "gateway down"}]

        order.finish_cancellation()
        assert order.status == OrderStatus.CANCELLED.value
        assert order.pending_failures == []
        assert isinstance(order._events[-1], OrderCancelled)

    def test_cancelled_is_terminal(self):
        order = _place()
        order.begin_cancellation("customer request")
        order.finish_cancellation()

        with pytest.raises(ValidationError):
            order.begin_cancellation("again")


class TestWeights:
    def test_apply_weights_sets_final_total(self):
        order = _place(items=[FIXED_LINE, VARIABLE_LINE])
        order.confirm()
        order.apply_weights([_weighed(order, 1600, 6400.0)])

        assert order.weights_reconciled is True
        assert order.final_total == 13000.0 + 6400.0 + 1000.0
        assert order.amount_due == order.final_total
        assert order.weights_confirmed_at is not None
        assert isinstance(order._events[-1], WeightsConfirmed)

    def test_review_flag_is_carried_to_the_order(self):
        order = _place(items=[VARIABLE_LINE])
        order.confirm()
        order.apply_weights([_weighed(order, 2900, 11600.0, requires_review=True)])

        assert order.weight_review_required is True

    def test_weights_are_final_once_recorded(self):
        order = _place(items=[VARIABLE_LINE])
        order.confirm()
        order.apply_weights([_weighed(order, 1600, 6400.0)])

        with pytest.raises(ValidationError):
            order.apply_weights([_weighed(order, 1700, 6800.0)])
        assert _variable_item(order).final_price == 6400.0

    def test_weights_need_a_confirmed_order(self):
        order = _place(items=[VARIABLE_LINE])
        with pytest.raises(ValidationError):
            order.apply_weights([_weighed(order, 1600, 6400.0)])

    def test_unknown_item_rejected(self):
        order = _place(items=[VARIABLE_LINE])
        order.confirm()
        bogus = ReconciledItem("nope", 1000, 1.0, 4000.0, 0.0, False)
        with pytest.raises(ValidationError):
            order.apply_weights([bogus])

    def test_completion_requires_weights(self):
        order = _place(items=[VARIABLE_LINE])
        order.confirm()
        order.start_processing()
        order.mark_ready()
        order.record_authorization("txn-1", order.authorization_amount)
        order.record_capture(order.total_amount)

        with pytest.raises(ValidationError) as exc:
            order.complete()
        assert "items" in exc.value.messages


class TestPaymentProjection:
    def test_authorization(self):
        order = _place()
        order.record_authorization("txn-1", 14000.0)

        assert order.payment_status == PaymentStatus.AUTHORIZED.value
        assert order.authorized_amount == 14000.0
        assert isinstance(order._events[-1], PaymentAuthorized)

    def test_authorization_can_be_replaced_by_a_larger_one(self):
        order = _place()
        order.record_authorization("txn-1", 14000.0)
        order.record_authorization("txn-2", 16000.0)

        assert order.transaction_id == "txn-2"
        assert order.authorized_amount == 16000.0

    def test_partial_then_full_refund(self):
        order = _place()
        order.record_authorization("txn-1", 14000.0)
        order.record_capture(14000.0)

        order.record_refund(4000.0)
        assert order.payment_status == PaymentStatus.PAID.value
        assert order.refundable_amount == 10000.0
        assert order._events[-1].fully_refunded is False

        order.record_refund(10000.0)
        assert order.payment_status == PaymentStatus.REFUNDED.value
        assert isinstance(order._events[-1], PaymentRefunded)
        assert order._events[-1].fully_refunded is True

    def test_voided_payment_cannot_be_captured(self):
        order = _place()
        order.record_authorization("txn-1", 14000.0)
        order.record_void()

        with pytest.raises(ValidationError):
            order.record_capture(14000.0)

    def test_failed_payment_can_be_retried(self):
        order = _place()
        order.record_payment_failure("Card declined")
        order.record_authorization("txn-2", 14000.0)

        assert order.payment_status == PaymentStatus.AUTHORIZED.value
