"""Payment authorization — command and handler."""

from protean import handle
from protean.fields import Float, Identifier
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.gateway import get_gateway
from settlement.order.order import Order
from settlement.payment.orchestrator import PaymentOrchestrator


@settlement.command(part_of="Order")
class AuthorizePayment:
    """Hold funds for a card or mobile-money order.

    Without ``amount`` the order's authorization amount is used. On an
    already authorized order ``amount`` is required and must be larger: it is
    the additional authorization that lets a heavier-than-estimated order be
    captured.
    """

    order_id = Identifier(required=True)
    amount = Float(min_value=0.0)


@settlement.command_handler(part_of=Order)
class AuthorizePaymentHandler:
    @handle(AuthorizePayment)
    def authorize_payment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        outcome = PaymentOrchestrator(get_gateway()).authorize(order, amount=command.amount)
        repo.add(order)
        return outcome
