"""Order confirmation — command and handler.

Confirming pins the stock reservation so the expiry sweep leaves it alone.
A reservation that already expired cannot be pinned and the confirmation
fails; the order has to be cancelled and placed again.
"""

from protean import handle
from protean.fields import Identifier
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.order.order import Order
from settlement.stock import get_stock_manager


@settlement.command(part_of="Order")
class ConfirmOrder:
    order_id = Identifier(required=True)


@settlement.command_handler(part_of=Order)
class ConfirmOrderHandler:
    @handle(ConfirmOrder)
    def confirm_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.confirm()
        if order.reservation_id:
            get_stock_manager().confirm(order.reservation_id)
        repo.add(order)
