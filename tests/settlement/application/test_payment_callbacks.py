"""Application tests for gateway callbacks — mapping, exactly-once application, integrity checks."""

import json

import pytest
from protean import current_domain

from settlement.order.creation import PlaceOrder
from settlement.order.order import Order, PaymentStatus
from settlement.payment.authorization import AuthorizePayment
from settlement.payment.callback import ProcessPaymentCallback
from settlement.payment.ledger import PaymentLedger
from settlement.shared.errors import CallbackRejected


def _process(command):
    return current_domain.process(command, asynchronous=False)


def _order(order_id):
    return current_domain.repository_for(Order).get(order_id)


def _awaiting_customer(shop):
    """A card order sent to the hosted payment page."""
    shop["gateway"].configure(should_succeed=True, pending_authorization=True)
    order_id = _process(
        PlaceOrder(
            customer_name="Awa Koné",
            customer_phone="0707070707",
            delivery_method="delivery",
            delivery_address="Plateau",
            payment_method="mobile_money",
            items=json.dumps([{"sku_id": "sku-rice", "quantity": 1}]),
        )
    )
    outcome = _process(AuthorizePayment(order_id=order_id))
    return order_id, outcome.transaction_id


def _callback(transaction_id, status="ACCEPTED", amount=8000.0):
    payload = {"transaction_id": transaction_id, "status": status, "amount": amount}
    return ProcessPaymentCallback(
        transaction_id=transaction_id,
        status=status,
        amount=amount,
        raw_payload=json.dumps(payload),
    )


def _callback_rows(transaction_id):
    return [log for log in PaymentLedger().for_transaction(transaction_id) if log.action == "callback"]


class TestCallbackMapping:
    def test_accepted_authorizes_payment(self, shop):
        order_id, txn = _awaiting_customer(shop)
        outcome = _process(_callback(txn))

        assert outcome.success is True
        assert outcome.duplicate is False
        order = _order(order_id)
        assert order.payment_status == PaymentStatus.AUTHORIZED.value
        assert order.authorized_amount == 8000.0
        rows = _callback_rows(txn)
        assert [(row.status, row.gateway_status) for row in rows] == [("success", "ACCEPTED")]

    def test_refused_fails_payment(self, shop):
        order_id, txn = _awaiting_customer(shop)
        _process(_callback(txn, status="REFUSED"))

        assert _order(order_id).payment_status == PaymentStatus.FAILED.value
        assert _callback_rows(txn)[0].status == "failed"

    def test_cancelled_by_customer_fails_payment(self, shop):
        order_id, txn = _awaiting_customer(shop)
        _process(_callback(txn, status="CANCELLED"))

        assert _order(order_id).payment_status == PaymentStatus.FAILED.value
        assert _callback_rows(txn)[0].status == "cancelled"

    def test_pending_is_recorded_without_state_change(self, shop):
        order_id, txn = _awaiting_customer(shop)
        _process(_callback(txn, status="PENDING"))

        assert _order(order_id).payment_status == PaymentStatus.PENDING.value
        assert _callback_rows(txn)[0].status == "pending"

        _process(_callback(txn, status="ACCEPTED"))
        assert _order(order_id).payment_status == PaymentStatus.AUTHORIZED.value


class TestCallbackIdempotency:
    def test_identical_replay_is_a_no_op(self, shop):
        order_id, txn = _awaiting_customer(shop)
        _process(_callback(txn))
        replay = _process(_callback(txn))

        assert replay.duplicate is True
        assert _order(order_id).payment_status == PaymentStatus.AUTHORIZED.value
        assert len(_callback_rows(txn)) == 1

    def test_conflicting_replay_is_rejected(self, shop):
        order_id, txn = _awaiting_customer(shop)
        _process(_callback(txn))

        with pytest.raises(CallbackRejected):
            _process(_callback(txn, status="REFUSED"))

        assert _order(order_id).payment_status == PaymentStatus.AUTHORIZED.value
        assert len(_callback_rows(txn)) == 1


class TestCallbackIntegrity:
    def test_amount_mismatch_is_rejected(self, shop):
        order_id, txn = _awaiting_customer(shop)

        with pytest.raises(CallbackRejected):
            _process(_callback(txn, amount=100.0))

        assert _order(order_id).payment_status == PaymentStatus.PENDING.value
        assert _callback_rows(txn) == []

    def test_unknown_transaction_is_rejected(self, shop):
        _awaiting_customer(shop)
        with pytest.raises(CallbackRejected):
            _process(_callback("CMD-unknown"))


class TestSupersededAuthorizations:
    def test_late_callback_for_voided_hold_is_not_applied(self, shop):
        shop["gateway"].configure(should_succeed=True)
        order_id = _process(
            PlaceOrder(
                customer_name="Awa Koné",
                customer_phone="0707070707",
                delivery_method="delivery",
                delivery_address="Plateau",
                payment_method="card",
                items=json.dumps([{"sku_id": "sku-rice", "quantity": 1}]),
            )
        )
        first = _process(AuthorizePayment(order_id=order_id)).transaction_id
        second = _process(AuthorizePayment(order_id=order_id, amount=9000.0)).transaction_id

        outcome = _process(_callback(first, amount=8000.0))

        assert outcome.success is False
        assert "superseded" in outcome.error
        order = _order(order_id)
        assert order.payment_status == PaymentStatus.AUTHORIZED.value
        assert order.transaction_id == second
        assert order.authorized_amount == 9000.0
        voids = [call for call in shop["gateway"].calls if call["method"] == "void"]
        assert voids == [{"method": "void", "transaction_id": first}]

    def test_abandoned_payment_page_does_not_win_over_the_retry(self, shop):
        order_id, abandoned = _awaiting_customer(shop)
        retry = _process(AuthorizePayment(order_id=order_id)).transaction_id

        assert _process(_callback(abandoned)).success is False
        assert _order(order_id).payment_status == PaymentStatus.PENDING.value

        assert _process(_callback(retry)).success is True
        order = _order(order_id)
        assert order.payment_status == PaymentStatus.AUTHORIZED.value
        assert order.transaction_id == retry
