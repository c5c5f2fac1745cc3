"""Order cancellation — commands, handler and the compensation coordinator.

Cancelling undoes what the order holds on the outside:

    1. release the stock reservation
    2. void the authorization, or refund what was captured
    3. cancel the courier booking

Every step is attempted even if an earlier one failed, and each one that
succeeds is recorded on the Order so a retry only repeats what is still
outstanding. While anything is outstanding the order stays ``cancelling``
with the failures attached; ``RetryCancellation`` resumes it.
"""

from dataclasses import dataclass, field

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from settlement.dispatch import get_dispatcher
from settlement.domain import settlement
from settlement.gateway import get_gateway
from settlement.order.order import Order, OrderStatus, PaymentStatus
from settlement.payment.orchestrator import PaymentOrchestrator
from settlement.shared.errors import SettlementError
from settlement.stock import get_stock_manager

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CancellationResult:
    order_id: str
    status: str
    failures: list[dict] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return not self.failures


class OrderCancellation:
    """Runs the compensations for one order. The caller persists the order."""

    def __init__(self, stock=None, payments: PaymentOrchestrator | None = None, dispatcher=None) -> None:
        self.stock = stock or get_stock_manager()
        self.payments = payments or PaymentOrchestrator(get_gateway())
        self.dispatcher = dispatcher or get_dispatcher()

    def run(self, order: Order, reason: str | None = None) -> CancellationResult:
        order.begin_cancellation(reason)

        failures = []
        for step, compensate in (
            ("stock", self._release_stock),
            ("payment", self._reverse_payment),
            ("delivery", self._cancel_delivery),
        ):
            try:
                error = compensate(order)
            except (SettlementError, ValidationError) as exc:
                error = str(getattr(exc, "messages", None) or exc)
            if error:
                failures.append({"step": step, "error": error})
                logger.warning(
                    "Cancellation step failed",
                    order_number=order.order_number,
                    step=step,
                    error=error,
                )

        if failures:
            order.park_cancellation(failures)
            logger.error(
                "Cancellation parked for operator",
                order_number=order.order_number,
                steps=[failure["step"] for failure in failures],
            )
        else:
            order.finish_cancellation()
            logger.info("Order cancelled", order_number=order.order_number, reason=order.cancellation_reason)
        return CancellationResult(order_id=str(order.id), status=order.status, failures=failures)

    def _release_stock(self, order: Order) -> str | None:
        if order.stock_released:
            return None
        if order.reservation_id:
            self.stock.release(order.reservation_id, reason="order_cancelled")
        order.mark_stock_released()
        return None

    def _reverse_payment(self, order: Order) -> str | None:
        if order.payment_reversed:
            return None

        status = PaymentStatus(order.payment_status)
        if status == PaymentStatus.AUTHORIZED or (status == PaymentStatus.PENDING and order.transaction_id):
            outcome = self.payments.void(order)
        elif status == PaymentStatus.PAID and order.refundable_amount > 0:
            outcome = self.payments.refund(order, reason=order.cancellation_reason or "Order cancelled")
        else:
            outcome = None

        if outcome is not None and not outcome.success:
            return outcome.error or f"{outcome.action} failed"
        order.mark_payment_reversed()
        return None

    def _cancel_delivery(self, order: Order) -> str | None:
        if order.delivery_cancelled or not order.delivery_id:
            return None
        result = self.dispatcher.cancel(order.delivery_id)
        if not result.success:
            return result.error or "Courier cancellation failed"
        order.mark_delivery_cancelled()
        return None


@settlement.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    reason = String(max_length=500, default="Cancelled by request")


@settlement.command(part_of="Order")
class RetryCancellation:
    """Resume the compensations of an order stuck in ``cancelling``."""

    order_id = Identifier(required=True)


@settlement.command_handler(part_of=Order)
class CancelOrderHandler:
    @handle(CancelOrder)
    def cancel_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        result = OrderCancellation().run(order, command.reason)
        repo.add(order)
        return result

    @handle(RetryCancellation)
    def retry_cancellation(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        if order.status != OrderStatus.CANCELLING.value:
            raise ValidationError({"status": [f"Order is {order.status}, not awaiting cancellation"]})
        result = OrderCancellation().run(order)
        repo.add(order)
        return result
