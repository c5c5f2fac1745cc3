"""Courier status updates — command and handler."""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import String
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.order.order import Order

logger = structlog.get_logger(__name__)


@settlement.command(part_of="Order")
class RecordDeliveryStatus:
    delivery_id = String(required=True, max_length=100)
    status = String(required=True, max_length=50)
    estimated_arrival = String(max_length=100)


@settlement.command_handler(part_of=Order)
class RecordDeliveryStatusHandler:
    @handle(RecordDeliveryStatus)
    def record_delivery_status(self, command):
        repo = current_domain.repository_for(Order)
        order = repo._dao.query.filter(delivery_id=command.delivery_id).all().first
        if order is None:
            raise ObjectNotFoundError(f"No order for delivery {command.delivery_id}")

        changed = order.record_delivery_status(command.status, command.estimated_arrival)
        if not changed:
            logger.info(
                "Stale or repeated delivery status ignored",
                delivery_id=command.delivery_id,
                status=command.status,
                current=order.delivery_status,
            )
            return False
        repo.add(order)
        return True
