"""Order completion — command and handler."""

from protean import handle
from protean.fields import Identifier
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.order.order import Order
from settlement.stock import get_stock_manager


@settlement.command(part_of="Order")
class CompleteOrder:
    """The customer has the goods; held stock becomes sold stock."""

    order_id = Identifier(required=True)


@settlement.command_handler(part_of=Order)
class CompleteOrderHandler:
    @handle(CompleteOrder)
    def complete_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.complete()
        if order.reservation_id:
            get_stock_manager().commit(order.reservation_id)
        repo.add(order)
