"""Delivery Dispatch Adapter — books, tracks and cancels couriers for orders.

Failures are returned as structured results with a ``retryable`` flag; they
are never swallowed because an undispatched order cannot be fulfilled.
"""

import structlog

from settlement.dispatch.phone import normalize_phone
from settlement.dispatch.port import CancelResult, DeliveryGateway, DispatchResult, TrackingStatus
from settlement.dispatch.vehicle import select_vehicle_type

logger = structlog.get_logger(__name__)


class DeliveryDispatcher:
    def __init__(
        self,
        gateway: DeliveryGateway,
        pickup_location: dict,
        store_contact: dict,
        webhook_url: str = "",
    ) -> None:
        self.gateway = gateway
        self.pickup_location = pickup_location
        self.store_contact = store_contact
        self.webhook_url = webhook_url

    def build_payload(self, order) -> dict:
        items = list(order.items or [])
        is_cash = order.payment_method == "cash"
        return {
            "order_id": order.order_number,
            "pickup": {
                "location": self.pickup_location,
                "contact": self.store_contact,
                "comment": f"Order {order.order_number}",
            },
            "dropoff": {
                "location": {"address": order.delivery_address},
                "contact": {
                    "name": order.customer_name,
                    "phone": normalize_phone(order.customer_phone),
                },
                "comment": order.delivery_instructions,
            },
            "items": [
                {
                    "name": item.product_name,
                    "quantity": item.quantity,
                    "weight": item.line_weight_grams / 1000,
                    "price": item.line_total,
                }
                for item in items
            ],
            "payment": {
                "type": "cash" if is_cash else "prepaid",
                "amount": order.amount_due if is_cash else 0,
            },
            "vehicle_type": select_vehicle_type(items),
            "webhook_url": self.webhook_url,
        }

    def create_delivery(self, order) -> DispatchResult:
        result = self.gateway.create_delivery(self.build_payload(order))
        if result.success:
            logger.info(
                "Delivery created",
                order_number=order.order_number,
                delivery_id=result.delivery_id,
            )
        else:
            logger.error(
                "Delivery creation failed",
                order_number=order.order_number,
                error=result.error,
                retryable=result.retryable,
            )
        return result

    def track(self, delivery_id: str) -> TrackingStatus:
        return self.gateway.get_status(delivery_id)

    def cancel(self, delivery_id: str, reason: str = "Order cancelled by merchant") -> CancelResult:
        result = self.gateway.cancel(delivery_id, reason)
        if result.success:
            logger.info("Delivery cancelled", delivery_id=delivery_id, reason=reason)
        else:
            logger.error("Delivery cancellation failed", delivery_id=delivery_id, error=result.error)
        return result
