"""Order fulfillment — commands and handler.

Processing and readiness. A delivery order is handed to the courier when it
becomes ready; if no courier can be booked the order stays in processing and
the error propagates.
"""

import structlog
from protean import handle
from protean.fields import Identifier
from protean.utils.globals import current_domain

from settlement.dispatch import get_dispatcher
from settlement.domain import settlement
from settlement.order.order import DeliveryMethod, Order
from settlement.shared.errors import DispatchUnavailable

logger = structlog.get_logger(__name__)


@settlement.command(part_of="Order")
class StartProcessing:
    """Preparation (picking, weighing) has begun."""

    order_id = Identifier(required=True)


@settlement.command(part_of="Order")
class MarkReady:
    """The order is packed."""

    order_id = Identifier(required=True)


@settlement.command_handler(part_of=Order)
class FulfillmentHandler:
    @handle(StartProcessing)
    def start_processing(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.start_processing()
        repo.add(order)

    @handle(MarkReady)
    def mark_ready(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.mark_ready()

        if order.delivery_method == DeliveryMethod.DELIVERY.value and not order.delivery_id:
            result = get_dispatcher().create_delivery(order)
            if not result.success:
                logger.error(
                    "Order not marked ready, courier unavailable",
                    order_number=order.order_number,
                    error=result.error,
                )
                raise DispatchUnavailable(result.error or "Delivery dispatch failed", retryable=result.retryable)
            order.record_dispatch(result.delivery_id, result.tracking_url, result.estimated_time)

        repo.add(order)
