"""Gateway-initiated payment updates — callbacks and status checks.

Callbacks arrive on the webhook after the signature was verified. The order
is found through the ledger row that opened the transaction, so a callback
for a transaction this service never started is rejected.
"""

import json

from protean import handle
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.gateway import get_gateway
from settlement.order.order import Order
from settlement.payment.ledger import PaymentLedger
from settlement.payment.orchestrator import PaymentCallback, PaymentOrchestrator
from settlement.shared.errors import CallbackRejected


@settlement.command(part_of="Order")
class ProcessPaymentCallback:
    transaction_id = String(required=True, max_length=100)
    status = String(required=True, max_length=30)
    amount = Float(required=True)
    raw_payload = Text()  # JSON, the raw notification


@settlement.command(part_of="Order")
class ReconcilePayment:
    """Re-read the transaction state from the gateway after a timeout."""

    order_id = Identifier(required=True)


@settlement.command_handler(part_of=Order)
class GatewayUpdateHandler:
    @handle(ProcessPaymentCallback)
    def process_payment_callback(self, command):
        ledger = PaymentLedger()
        request = ledger.authorization_request(command.transaction_id)
        if request is None:
            raise CallbackRejected(f"Unknown transaction {command.transaction_id}")

        repo = current_domain.repository_for(Order)
        order = repo.get(request.order_id)
        callback = PaymentCallback(
            transaction_id=command.transaction_id,
            status=command.status,
            amount=command.amount,
            payload=json.loads(command.raw_payload) if command.raw_payload else {},
        )
        outcome = PaymentOrchestrator(get_gateway(), ledger=ledger).apply_callback(order, callback)
        repo.add(order)
        return outcome

    @handle(ReconcilePayment)
    def reconcile_payment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        outcome = PaymentOrchestrator(get_gateway()).reconcile(order)
        repo.add(order)
        return outcome
