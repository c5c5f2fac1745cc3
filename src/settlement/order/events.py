"""Order domain events — immutable facts about settlement state changes.

All events are past tense and versioned. Payment events are raised by the
Order because ``payment_status`` is projected onto it.
"""

from protean.fields import Boolean, DateTime, Float, Identifier, String, Text

from settlement.domain import settlement


@settlement.event(part_of="Order")
class OrderPlaced:
    """A checkout produced a new order with stock held for it."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_name = String(required=True)
    delivery_method = String(required=True)
    payment_method = String(required=True)
    items = Text(required=True)  # JSON list of item dicts
    subtotal = Float(required=True)
    delivery_fee = Float(required=True)
    total_amount = Float(required=True)
    estimated_total = Float()
    reservation_id = String()
    placed_at = DateTime(required=True)


@settlement.event(part_of="Order")
class OrderConfirmed:
    """An operator accepted the order."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    confirmed_at = DateTime(required=True)


@settlement.event(part_of="Order")
class OrderProcessingStarted:
    """Preparation of the order began."""

    __version__ = 1

    order_id = Identifier(required=True)
    started_at = DateTime(required=True)


@settlement.event(part_of="Order")
class WeightsConfirmed:
    """Variable-weight lines were weighed and repriced."""

    __version__ = 1

    order_id = Identifier(required=True)
    items = Text(required=True)  # JSON list of reconciled lines
    final_total = Float()
    review_required = Boolean(default=False)
    confirmed_at = DateTime(required=True)


@settlement.event(part_of="Order")
class OrderReady:
    """The order is packed and waiting for pickup or the courier."""

    __version__ = 1

    order_id = Identifier(required=True)
    ready_at = DateTime(required=True)


@settlement.event(part_of="Order")
class DeliveryDispatched:
    """A courier was booked for the order."""

    __version__ = 1

    order_id = Identifier(required=True)
    delivery_id = String(required=True)
    tracking_url = String()
    dispatched_at = DateTime(required=True)


@settlement.event(part_of="Order")
class DeliveryStatusUpdated:
    """The courier reported a new delivery status."""

    __version__ = 1

    order_id = Identifier(required=True)
    delivery_id = String(required=True)
    status = String(required=True)
    occurred_at = DateTime(required=True)


@settlement.event(part_of="Order")
class OrderCompleted:
    """The order was handed over and paid for."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    amount = Float(required=True)
    completed_at = DateTime(required=True)


@settlement.event(part_of="Order")
class CancellationParked:
    """Cancellation could not finish; an operator must intervene."""

    __version__ = 1

    order_id = Identifier(required=True)
    reason = String()
    failures = Text(required=True)  # JSON list of {step, error}
    parked_at = DateTime(required=True)


@settlement.event(part_of="Order")
class OrderCancelled:
    """The order was cancelled and every compensation succeeded."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    reason = String()
    cancelled_at = DateTime(required=True)


@settlement.event(part_of="Order")
class PaymentAuthorized:
    """Funds were reserved on the customer's instrument."""

    __version__ = 1

    order_id = Identifier(required=True)
    transaction_id = String(required=True)
    amount = Float(required=True)
    authorized_at = DateTime(required=True)


@settlement.event(part_of="Order")
class PaymentCaptured:
    """Money was collected (gateway capture or cash on delivery)."""

    __version__ = 1

    order_id = Identifier(required=True)
    transaction_id = String()
    payment_method = String(required=True)
    amount = Float(required=True)
    captured_at = DateTime(required=True)


@settlement.event(part_of="Order")
class PaymentVoided:
    """An authorization was released without capture."""

    __version__ = 1

    order_id = Identifier(required=True)
    transaction_id = String(required=True)
    voided_at = DateTime(required=True)


@settlement.event(part_of="Order")
class PaymentRefunded:
    """Captured money was returned to the customer."""

    __version__ = 1

    order_id = Identifier(required=True)
    transaction_id = String()
    amount = Float(required=True)
    fully_refunded = Boolean(default=False)
    refunded_at = DateTime(required=True)


@settlement.event(part_of="Order")
class PaymentFailed:
    """The gateway rejected the payment."""

    __version__ = 1

    order_id = Identifier(required=True)
    transaction_id = String()
    reason = String()
    failed_at = DateTime(required=True)
