"""Order aggregate (CQRS) — the top-level settlement coordinator.

The Order snapshots what was bought, holds the stock reservation id, and
projects payment and delivery progress reported by the orchestrator and the
courier. Collaborators (stock, gateway, courier) are driven from command
handlers; the aggregate only enforces which changes are legal.

Order State Machine:
    pending → confirmed → processing → ready → completed
    {pending, confirmed, processing, ready} → cancelling → cancelled

``cancelling`` is where an order stays while any compensation (stock
release, payment reversal, courier cancellation) is outstanding.

Payment State Machine:
    pending → authorized → paid → refunded
    {pending, authorized} → failed
    {pending, authorized} → voided
    pending → paid  (cash on delivery)
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
)

from settlement.domain import settlement
from settlement.order.events import (
    CancellationParked,
    DeliveryDispatched,
    DeliveryStatusUpdated,
    OrderCancelled,
    OrderCompleted,
    OrderConfirmed,
    OrderPlaced,
    OrderProcessingStarted,
    OrderReady,
    PaymentAuthorized,
    PaymentCaptured,
    PaymentFailed,
    PaymentRefunded,
    PaymentVoided,
    WeightsConfirmed,
)
from settlement.weighing.reconciliation import ReconciledItem, to_money


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"


class PaymentStatus(Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    VOIDED = "voided"


class PaymentMethod(Enum):
    CASH = "cash"
    CARD = "card"
    MOBILE_MONEY = "mobile_money"


class DeliveryMethod(Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLING},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLING},
    OrderStatus.PROCESSING: {OrderStatus.READY, OrderStatus.CANCELLING},
    OrderStatus.READY: {OrderStatus.COMPLETED, OrderStatus.CANCELLING},
    OrderStatus.CANCELLING: {OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: set(),  # terminal
    OrderStatus.CANCELLED: set(),  # terminal
}

_PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.AUTHORIZED, PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.VOIDED},
    PaymentStatus.AUTHORIZED: {PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.VOIDED},
    PaymentStatus.FAILED: {PaymentStatus.PENDING, PaymentStatus.AUTHORIZED, PaymentStatus.FAILED},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),
    PaymentStatus.VOIDED: set(),
}

_WEIGHABLE_STATUSES = {OrderStatus.CONFIRMED, OrderStatus.PROCESSING}

# Courier statuses by how far along the delivery is. Statuses missing from the
# table are still recorded, but never after a final one.
_DELIVERY_PROGRESS = {
    "created": 0,
    "accepted": 1,
    "assigned": 1,
    "pickup_arrived": 2,
    "picked_up": 3,
    "in_transit": 4,
    "delivering": 4,
    "delivered": 5,
    "returned": 5,
    "failed": 5,
    "cancelled": 5,
}
_FINAL_DELIVERY_PROGRESS = 5


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@settlement.entity(part_of="Order")
class OrderItem:
    """A purchased line, snapshotted from the catalog at checkout."""

    sku_id = Identifier(required=True)
    sku_code = String(max_length=100)
    product_name = String(required=True, max_length=255)
    unit = String(max_length=10, default="piece")
    unit_price = Float(required=True, min_value=0.0)
    quantity = Integer(required=True, min_value=1)
    subtotal = Float(default=0.0)
    unit_weight_grams = Integer()

    # Variable weight
    is_variable_weight = Boolean(default=False)
    min_weight_grams = Integer()
    max_weight_grams = Integer()
    estimated_weight_grams = Integer()  # per piece
    estimated_quantity = Float()  # kg, whole line
    estimated_price = Float()  # includes the estimation margin
    actual_weight_grams = Integer()  # whole line
    final_quantity = Float()
    final_price = Float()
    weight_deviation = Float()
    requires_review = Boolean(default=False)

    @property
    def is_reconciled(self) -> bool:
        return self.final_price is not None

    @property
    def line_total(self) -> float:
        if not self.is_variable_weight:
            return self.subtotal
        if self.is_reconciled:
            return self.final_price
        return self.estimated_price or 0.0

    @property
    def line_weight_grams(self) -> int:
        if self.is_variable_weight:
            if self.actual_weight_grams is not None:
                return self.actual_weight_grams
            return (self.estimated_weight_grams or 0) * self.quantity
        return (self.unit_weight_grams or 0) * self.quantity


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@settlement.aggregate
class Order:
    order_number = String(required=True, max_length=40, unique=True)
    customer_name = String(required=True, max_length=200)
    customer_phone = String(required=True, max_length=30)
    customer_email = String(max_length=254)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    items = HasMany(OrderItem)

    # Fulfilment
    delivery_method = String(choices=DeliveryMethod, required=True)
    delivery_address = String(max_length=500)
    delivery_instructions = String(max_length=500)
    delivery_zone = String(max_length=50)
    pickup_date = String(max_length=10)
    pickup_time_slot = String(max_length=20)
    delivery_id = String(max_length=100)
    delivery_status = String(max_length=50)
    tracking_url = String(max_length=500)
    delivery_eta = String(max_length=100)

    # Money
    currency = String(max_length=3, default="XOF")
    subtotal = Float(default=0.0)
    delivery_fee = Float(default=0.0)
    total_amount = Float(default=0.0)
    estimated_total = Float()
    final_total = Float()
    weights_confirmed_at = DateTime()
    weight_review_required = Boolean(default=False)

    # Payment projection
    payment_method = String(choices=PaymentMethod, default=PaymentMethod.CASH.value)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    transaction_id = String(max_length=100)
    payment_token = String(max_length=255)
    payment_url = String(max_length=500)
    authorized_amount = Float(default=0.0)
    captured_amount = Float(default=0.0)
    refunded_amount = Float(default=0.0)

    # Stock
    reservation_id = String(max_length=50)

    # Cancellation bookkeeping
    cancellation_reason = String(max_length=500)
    cancellation_failures = Text()  # JSON list of {step, error}
    stock_released = Boolean(default=False)
    payment_reversed = Boolean(default=False)
    delivery_cancelled = Boolean(default=False)

    confirmed_at = DateTime()
    completed_at = DateTime()
    cancelled_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        order_number: str,
        customer: dict,
        delivery_method: str,
        payment_method: str,
        items_data: list[dict],
        delivery_fee: float = 0.0,
        reservation_id: str | None = None,
        currency: str = "XOF",
        **fulfilment,
    ):
        """Create a pending order from priced cart lines."""
        now = datetime.now(UTC)
        order = cls(
            order_number=order_number,
            customer_name=customer["name"],
            customer_phone=customer["phone"],
            customer_email=customer.get("email"),
            delivery_method=delivery_method,
            payment_method=payment_method,
            delivery_address=fulfilment.get("delivery_address"),
            delivery_instructions=fulfilment.get("delivery_instructions"),
            delivery_zone=fulfilment.get("delivery_zone"),
            pickup_date=fulfilment.get("pickup_date"),
            pickup_time_slot=fulfilment.get("pickup_time_slot"),
            currency=currency,
            delivery_fee=delivery_fee,
            reservation_id=reservation_id,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        for item_data in items_data:
            order.add_items(OrderItem(**item_data))
        order._recalculate_totals()

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order_number,
                customer_name=order.customer_name,
                delivery_method=delivery_method,
                payment_method=payment_method,
                items=json.dumps(items_data),
                subtotal=order.subtotal,
                delivery_fee=order.delivery_fee,
                total_amount=order.total_amount,
                estimated_total=order.estimated_total,
                reservation_id=reservation_id or "",
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Derived amounts
    # -------------------------------------------------------------------
    @property
    def has_variable_weight_items(self) -> bool:
        return any(item.is_variable_weight for item in self.items or [])

    @property
    def weights_reconciled(self) -> bool:
        return all(item.is_reconciled for item in self.items or [] if item.is_variable_weight)

    @property
    def authorization_amount(self) -> float:
        """What to pre-authorize: the margin-inflated estimate when one exists."""
        if self.estimated_total is not None:
            return self.estimated_total
        return self.total_amount

    @property
    def amount_due(self) -> float:
        """What to collect: the weighed total once known."""
        if self.final_total is not None:
            return self.final_total
        return self.total_amount

    @property
    def refundable_amount(self) -> float:
        return to_money((self.captured_amount or 0.0) - (self.refunded_amount or 0.0))

    def _recalculate_totals(self) -> None:
        items = list(self.items or [])
        fee = self.delivery_fee or 0.0
        self.subtotal = to_money(sum(item.subtotal or 0.0 for item in items))
        self.total_amount = to_money(self.subtotal + fee)

        if self.has_variable_weight_items:
            self.estimated_total = to_money(
                sum((item.estimated_price or 0.0) if item.is_variable_weight else item.subtotal for item in items)
                + fee
            )
            if self.weights_reconciled:
                self.final_total = to_money(sum(item.line_total for item in items) + fee)

    # -------------------------------------------------------------------
    # State transition helpers
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status: OrderStatus) -> None:
        current = OrderStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def _assert_payment_transition(self, target: PaymentStatus) -> None:
        current = PaymentStatus(self.payment_status)
        if target not in _PAYMENT_TRANSITIONS.get(current, set()):
            raise ValidationError(
                {"payment_status": [f"Cannot move payment from {current.value} to {target.value}"]}
            )

    def _touch(self) -> datetime:
        now = datetime.now(UTC)
        self.updated_at = now
        return now

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def confirm(self) -> None:
        self._assert_can_transition(OrderStatus.CONFIRMED)
        now = self._touch()
        self.status = OrderStatus.CONFIRMED.value
        self.confirmed_at = now
        self.raise_(OrderConfirmed(order_id=str(self.id), order_number=self.order_number, confirmed_at=now))

    def start_processing(self) -> None:
        self._assert_can_transition(OrderStatus.PROCESSING)
        now = self._touch()
        self.status = OrderStatus.PROCESSING.value
        self.raise_(OrderProcessingStarted(order_id=str(self.id), started_at=now))

    def apply_weights(self, results: list[ReconciledItem]) -> None:
        """Record reconciled weights. Final values are written once only."""
        if OrderStatus(self.status) not in _WEIGHABLE_STATUSES:
            raise ValidationError({"status": [f"Weights cannot be confirmed while the order is {self.status}"]})
        if not results:
            raise ValidationError({"weights": ["No weights given"]})

        by_id = {str(item.id): item for item in self.items or []}
        for result in results:
            item = by_id.get(result.item_id)
            if item is None:
                raise ValidationError({"item_id": [f"Item {result.item_id} not found in this order"]})
            if item.is_reconciled:
                raise ValidationError({"item_id": [f"Item {result.item_id} has already been weighed"]})

        for result in results:
            item = by_id[result.item_id]
            item.actual_weight_grams = result.actual_weight_grams
            item.final_quantity = result.final_quantity
            item.final_price = result.final_price
            item.weight_deviation = result.deviation
            item.requires_review = result.requires_review

        now = self._touch()
        self._recalculate_totals()
        if self.weights_reconciled:
            self.weights_confirmed_at = now
        self.weight_review_required = any(item.requires_review for item in self.items or [])

        self.raise_(
            WeightsConfirmed(
                order_id=str(self.id),
                items=json.dumps(
                    [
                        {
                            "item_id": r.item_id,
                            "actual_weight_grams": r.actual_weight_grams,
                            "final_price": r.final_price,
                            "deviation": r.deviation,
                            "requires_review": r.requires_review,
                        }
                        for r in results
                    ]
                ),
                final_total=self.final_total,
                review_required=self.weight_review_required,
                confirmed_at=now,
            )
        )

    def mark_ready(self) -> None:
        self._assert_can_transition(OrderStatus.READY)
        now = self._touch()
        self.status = OrderStatus.READY.value
        self.raise_(OrderReady(order_id=str(self.id), ready_at=now))

    def record_dispatch(self, delivery_id: str, tracking_url: str | None, estimated_time: str | None) -> None:
        now = self._touch()
        self.delivery_id = delivery_id
        self.tracking_url = tracking_url
        self.delivery_eta = estimated_time
        self.delivery_status = "created"
        self.raise_(
            DeliveryDispatched(
                order_id=str(self.id),
                delivery_id=delivery_id,
                tracking_url=tracking_url,
                dispatched_at=now,
            )
        )

    def record_delivery_status(self, status: str, estimated_arrival: str | None = None) -> bool:
        """Apply a courier status update.

        Returns False, leaving the order untouched, for a repeat of the current
        status or one the delivery has already moved past.
        """
        if self._is_stale_delivery_status(status):
            return False
        now = self._touch()
        self.delivery_status = status
        if estimated_arrival:
            self.delivery_eta = estimated_arrival
        self.raise_(
            DeliveryStatusUpdated(
                order_id=str(self.id),
                delivery_id=self.delivery_id,
                status=status,
                occurred_at=now,
            )
        )
        return True

    def _is_stale_delivery_status(self, status: str) -> bool:
        if status == self.delivery_status:
            return True
        current = _DELIVERY_PROGRESS.get(self.delivery_status or "")
        if current == _FINAL_DELIVERY_PROGRESS:
            return True
        incoming = _DELIVERY_PROGRESS.get(status)
        return current is not None and incoming is not None and incoming <= current

    def complete(self) -> None:
        self._assert_can_transition(OrderStatus.COMPLETED)
        if self.payment_status != PaymentStatus.PAID.value:
            raise ValidationError({"payment_status": ["Order must be paid before it can be completed"]})
        if not self.weights_reconciled:
            raise ValidationError({"items": ["Variable-weight items must be weighed before completion"]})

        now = self._touch()
        self.status = OrderStatus.COMPLETED.value
        self.completed_at = now
        self.raise_(
            OrderCompleted(
                order_id=str(self.id),
                order_number=self.order_number,
                amount=self.captured_amount,
                completed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------
    def begin_cancellation(self, reason: str | None) -> None:
        """Enter (or resume) the cancelling sub-state."""
        if OrderStatus(self.status) != OrderStatus.CANCELLING:
            self._assert_can_transition(OrderStatus.CANCELLING)
            self.status = OrderStatus.CANCELLING.value
            self.cancellation_reason = reason
        self._touch()

    def mark_stock_released(self) -> None:
        self.stock_released = True

    def mark_payment_reversed(self) -> None:
        self.payment_reversed = True

    def mark_delivery_cancelled(self) -> None:
        self.delivery_cancelled = True
        self.delivery_status = "cancelled"

    def park_cancellation(self, failures: list[dict]) -> None:
        now = self._touch()
        self.cancellation_failures = json.dumps(failures)
        self.raise_(
            CancellationParked(
                order_id=str(self.id),
                reason=self.cancellation_reason,
                failures=self.cancellation_failures,
                parked_at=now,
            )
        )

    def finish_cancellation(self) -> None:
        self._assert_can_transition(OrderStatus.CANCELLED)
        now = self._touch()
        self.status = OrderStatus.CANCELLED.value
        self.cancelled_at = now
        self.cancellation_failures = None
        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                order_number=self.order_number,
                reason=self.cancellation_reason,
                cancelled_at=now,
            )
        )

    @property
    def pending_failures(self) -> list[dict]:
        return json.loads(self.cancellation_failures) if self.cancellation_failures else []

    # -------------------------------------------------------------------
    # Payment projection
    # -------------------------------------------------------------------
    def record_authorization_pending(
        self,
        transaction_id: str,
        payment_token: str | None,
        payment_url: str | None,
    ) -> None:
        """The gateway is waiting for the customer (hosted payment page)."""
        if self.payment_status != PaymentStatus.PENDING.value:
            self._assert_payment_transition(PaymentStatus.PENDING)
        self._touch()
        self.payment_status = PaymentStatus.PENDING.value
        self.transaction_id = transaction_id
        self.payment_token = payment_token
        self.payment_url = payment_url

    def record_authorization(self, transaction_id: str, amount: float) -> None:
        """Funds are held. On an already authorized order this replaces the hold."""
        if self.payment_status != PaymentStatus.AUTHORIZED.value:
            self._assert_payment_transition(PaymentStatus.AUTHORIZED)
        now = self._touch()
        self.payment_status = PaymentStatus.AUTHORIZED.value
        self.transaction_id = transaction_id
        self.authorized_amount = to_money(amount)
        self.raise_(
            PaymentAuthorized(
                order_id=str(self.id),
                transaction_id=transaction_id,
                amount=self.authorized_amount,
                authorized_at=now,
            )
        )

    def record_capture(self, amount: float) -> None:
        self._assert_payment_transition(PaymentStatus.PAID)
        now = self._touch()
        self.payment_status = PaymentStatus.PAID.value
        self.captured_amount = to_money(amount)
        self.raise_(
            PaymentCaptured(
                order_id=str(self.id),
                transaction_id=self.transaction_id,
                payment_method=self.payment_method,
                amount=self.captured_amount,
                captured_at=now,
            )
        )

    def record_void(self) -> None:
        self._assert_payment_transition(PaymentStatus.VOIDED)
        now = self._touch()
        self.payment_status = PaymentStatus.VOIDED.value
        self.raise_(PaymentVoided(order_id=str(self.id), transaction_id=self.transaction_id or "", voided_at=now))

    def record_refund(self, amount: float) -> None:
        if self.payment_status != PaymentStatus.PAID.value:
            raise ValidationError({"payment_status": ["Only paid orders can be refunded"]})
        now = self._touch()
        self.refunded_amount = to_money((self.refunded_amount or 0.0) + amount)
        fully_refunded = self.refunded_amount >= self.captured_amount
        if fully_refunded:
            self.payment_status = PaymentStatus.REFUNDED.value
        self.raise_(
            PaymentRefunded(
                order_id=str(self.id),
                transaction_id=self.transaction_id,
                amount=to_money(amount),
                fully_refunded=fully_refunded,
                refunded_at=now,
            )
        )

    def record_payment_failure(self, reason: str | None) -> None:
        self._assert_payment_transition(PaymentStatus.FAILED)
        now = self._touch()
        self.payment_status = PaymentStatus.FAILED.value
        self.raise_(
            PaymentFailed(
                order_id=str(self.id),
                transaction_id=self.transaction_id,
                reason=reason,
                failed_at=now,
            )
        )
