"""Payment collection — capture and cash confirmation."""

from protean import handle
from protean.fields import Float, Identifier
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.gateway import get_gateway
from settlement.order.order import Order
from settlement.payment.orchestrator import PaymentOrchestrator


@settlement.command(part_of="Order")
class CapturePayment:
    order_id = Identifier(required=True)
    amount = Float(min_value=0.0)  # defaults to the amount due


@settlement.command(part_of="Order")
class ConfirmCashPayment:
    """Cash was collected at the counter or on the doorstep."""

    order_id = Identifier(required=True)


@settlement.command_handler(part_of=Order)
class CollectPaymentHandler:
    @handle(CapturePayment)
    def capture_payment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        outcome = PaymentOrchestrator(get_gateway()).capture(order, amount=command.amount)
        repo.add(order)
        return outcome

    @handle(ConfirmCashPayment)
    def confirm_cash_payment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        outcome = PaymentOrchestrator(get_gateway()).confirm_cash(order)
        repo.add(order)
        return outcome
