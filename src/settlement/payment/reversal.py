"""Payment reversal — void and refund commands."""

from protean import handle
from protean.fields import Float, Identifier, String
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.gateway import get_gateway
from settlement.order.order import Order
from settlement.payment.orchestrator import PaymentOrchestrator


@settlement.command(part_of="Order")
class VoidPayment:
    order_id = Identifier(required=True)


@settlement.command(part_of="Order")
class RefundPayment:
    order_id = Identifier(required=True)
    amount = Float(min_value=0.0)  # defaults to everything still refundable
    reason = String(max_length=255, default="Refund requested")


@settlement.command_handler(part_of=Order)
class ReversePaymentHandler:
    @handle(VoidPayment)
    def void_payment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        outcome = PaymentOrchestrator(get_gateway()).void(order)
        repo.add(order)
        return outcome

    @handle(RefundPayment)
    def refund_payment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        outcome = PaymentOrchestrator(get_gateway()).refund(order, amount=command.amount, reason=command.reason)
        repo.add(order)
        return outcome
