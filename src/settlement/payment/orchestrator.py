"""Payment Orchestrator — drives one order's payment against the gateway.

    pending ──authorize──▶ authorized ──capture──▶ paid ──refund──▶ refunded
       │                      │
       └──────── void / gateway rejection ───────▶ voided / failed

Every gateway interaction appends a PaymentLog row before the method returns,
whatever the outcome. Gateway declines, transport errors and timeouts come
back as a PaymentOutcome; only requests that are invalid before any gateway
call (wrong state, capture above the authorized amount) raise ValidationError.

The orchestrator mutates the Order it is given but does not persist it; the
calling command handler owns the unit of work.
"""

import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from protean.exceptions import ValidationError

from settlement.dispatch.phone import local_phone
from settlement.gateway.port import GatewayResult, PaymentGateway
from settlement.order.order import Order, PaymentMethod, PaymentStatus
from settlement.payment.ledger import PaymentAction, PaymentLedger, PaymentLog, PaymentLogStatus
from settlement.shared.errors import CallbackRejected

logger = structlog.get_logger(__name__)

_AMOUNT_TOLERANCE = 0.01

# Gateway transaction statuses as reported by callbacks and status checks.
ACCEPTED = "ACCEPTED"
REFUSED = "REFUSED"
CANCELLED = "CANCELLED"
PENDING = "PENDING"
CAPTURED = "CAPTURED"
VOIDED = "VOIDED"
REFUNDED = "REFUNDED"

_CALLBACK_LOG_STATUS = {
    ACCEPTED: PaymentLogStatus.SUCCESS,
    REFUSED: PaymentLogStatus.FAILED,
    CANCELLED: PaymentLogStatus.CANCELLED,
    PENDING: PaymentLogStatus.PENDING,
}


@dataclass(frozen=True)
class PaymentOutcome:
    """What happened to one payment request."""

    success: bool
    action: str
    payment_status: str
    amount: float = 0.0
    transaction_id: str | None = None
    payment_url: str | None = None
    error: str | None = None
    retryable: bool = False
    needs_reconciliation: bool = False
    duplicate: bool = False


@dataclass(frozen=True)
class PaymentCallback:
    """Gateway notification about a transaction, already signature-checked."""

    transaction_id: str
    status: str
    amount: float
    payload: dict


def generate_transaction_id(order_number: str, now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    return f"{order_number}-{now.strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(3).upper()}"


class PaymentOrchestrator:
    def __init__(
        self,
        gateway: PaymentGateway,
        ledger: PaymentLedger | None = None,
        transaction_ids: Callable[[str], str] = generate_transaction_id,
    ) -> None:
        self.gateway = gateway
        self.ledger = ledger or PaymentLedger()
        self._transaction_ids = transaction_ids

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _log(
        self,
        order: Order,
        action: PaymentAction,
        result: GatewayResult,
        amount: float,
        transaction_id: str | None = None,
    ) -> PaymentLog:
        if result.success:
            status = PaymentLogStatus.PENDING if result.status == "pending" else PaymentLogStatus.SUCCESS
        else:
            status = PaymentLogStatus.FAILED
        error = result.failure_reason
        if result.timed_out:
            error = f"timeout: {error}" if error else "timeout"
        return self.ledger.append(
            PaymentLog.entry(
                order,
                action,
                status,
                amount=amount,
                transaction_id=transaction_id or result.transaction_id,
                request=result.request,
                response=result.response,
                error=error,
                reference_number=result.reference_number,
            )
        )

    @staticmethod
    def _outcome(order: Order, action: PaymentAction, result: GatewayResult, amount: float, **extra) -> PaymentOutcome:
        return PaymentOutcome(
            success=result.success,
            action=action.value,
            payment_status=order.payment_status,
            amount=amount,
            transaction_id=result.transaction_id or order.transaction_id,
            error=result.failure_reason,
            retryable=result.retryable,
            needs_reconciliation=result.timed_out,
            **extra,
        )

    @staticmethod
    def _require_status(order: Order, allowed: set[PaymentStatus], operation: str) -> None:
        if PaymentStatus(order.payment_status) not in allowed:
            raise ValidationError({"payment_status": [f"Cannot {operation} a payment that is {order.payment_status}"]})

    @staticmethod
    def _require_weights(order: Order) -> None:
        if not order.weights_reconciled:
            raise ValidationError({"items": ["Variable-weight items must be weighed before payment is collected"]})

    # -------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------
    def authorize(self, order: Order, amount: float | None = None) -> PaymentOutcome:
        """Pre-authorize (or initiate) a card/mobile-money payment.

        On an already authorized order this is the explicit additional
        authorization: a new hold for the larger ``amount`` replaces the old
        one, which is voided once the new hold is in place.
        """
        if order.payment_method == PaymentMethod.CASH.value:
            raise ValidationError({"payment_method": ["Cash orders are settled on delivery"]})
        self._require_status(
            order,
            {PaymentStatus.PENDING, PaymentStatus.FAILED, PaymentStatus.AUTHORIZED},
            "authorize",
        )

        reauthorizing = order.payment_status == PaymentStatus.AUTHORIZED.value
        if reauthorizing:
            if amount is None or amount <= order.authorized_amount:
                raise ValidationError(
                    {"amount": [f"Additional authorization must exceed the current {order.authorized_amount}"]}
                )
        amount = order.authorization_amount if amount is None else amount
        if amount <= 0:
            raise ValidationError({"amount": ["Amount must be positive"]})

        preauthorize = order.has_variable_weight_items
        action = PaymentAction.PREAUTH if preauthorize else PaymentAction.INITIATE
        transaction_id = self._transaction_ids(order.order_number)
        result = self.gateway.authorize(
            transaction_id=transaction_id,
            amount=amount,
            currency=order.currency,
            preauthorize=preauthorize,
            customer={
                "name": order.customer_name,
                "phone": local_phone(order.customer_phone),
                "email": order.customer_email or "",
            },
            metadata={"order_id": str(order.id), "order_number": order.order_number},
        )
        self._log(order, action, result, amount, transaction_id=transaction_id)

        if result.success and result.status == "pending":
            if not reauthorizing:
                order.record_authorization_pending(transaction_id, result.payment_token, result.payment_url)
            logger.info("Payment awaiting customer", order_number=order.order_number, transaction_id=transaction_id)
            return self._outcome(order, action, result, amount, payment_url=result.payment_url)

        if result.success:
            self._switch_authorization(order, transaction_id, amount)
            logger.info("Payment authorized", order_number=order.order_number, amount=amount)
        elif not reauthorizing:
            order.record_payment_failure(result.failure_reason)
            logger.warning(
                "Payment authorization failed", order_number=order.order_number, reason=result.failure_reason
            )
        else:
            logger.warning(
                "Additional authorization failed, previous hold kept",
                order_number=order.order_number,
                reason=result.failure_reason,
            )
        return self._outcome(order, action, result, amount)

    def _switch_authorization(self, order: Order, transaction_id: str, amount: float) -> None:
        previous = order.transaction_id if order.payment_status == PaymentStatus.AUTHORIZED.value else None
        order.record_authorization(transaction_id, amount)
        if previous and previous != transaction_id:
            released = self.gateway.void(previous)
            self._log(order, PaymentAction.VOID, released, 0.0, transaction_id=previous)
            if not released.success:
                logger.error(
                    "Superseded authorization not voided",
                    order_number=order.order_number,
                    transaction_id=previous,
                    reason=released.failure_reason,
                )

    # -------------------------------------------------------------------
    # Capture / void / refund
    # -------------------------------------------------------------------
    def capture(self, order: Order, amount: float | None = None) -> PaymentOutcome:
        self._require_status(order, {PaymentStatus.AUTHORIZED}, "capture")
        self._require_weights(order)
        amount = order.amount_due if amount is None else amount
        if amount <= 0:
            raise ValidationError({"amount": ["Amount must be positive"]})
        if amount > order.authorized_amount + _AMOUNT_TOLERANCE:
            raise ValidationError(
                {
                    "amount": [
                        f"Capture of {amount} exceeds the authorized {order.authorized_amount}; "
                        "authorize the difference first"
                    ]
                }
            )

        result = self.gateway.capture(order.transaction_id, amount)
        self._log(order, PaymentAction.CAPTURE, result, amount, transaction_id=order.transaction_id)

        if result.success:
            order.record_capture(amount)
            logger.info("Payment captured", order_number=order.order_number, amount=amount)
        elif result.timed_out:
            logger.error(
                "Payment capture timed out, reconciliation required",
                order_number=order.order_number,
                transaction_id=order.transaction_id,
            )
        else:
            order.record_payment_failure(result.failure_reason)
            logger.warning("Payment capture failed", order_number=order.order_number, reason=result.failure_reason)
        return self._outcome(order, PaymentAction.CAPTURE, result, amount)

    def void(self, order: Order) -> PaymentOutcome:
        self._require_status(order, {PaymentStatus.AUTHORIZED, PaymentStatus.PENDING}, "void")
        if not order.transaction_id:
            raise ValidationError({"transaction_id": ["No transaction to void"]})

        result = self.gateway.void(order.transaction_id)
        self._log(order, PaymentAction.VOID, result, 0.0, transaction_id=order.transaction_id)

        if result.success:
            order.record_void()
            logger.info("Payment voided", order_number=order.order_number)
        else:
            logger.warning("Payment void failed", order_number=order.order_number, reason=result.failure_reason)
        return self._outcome(order, PaymentAction.VOID, result, 0.0)

    def refund(self, order: Order, amount: float | None = None, reason: str = "Order cancelled") -> PaymentOutcome:
        self._require_status(order, {PaymentStatus.PAID}, "refund")
        amount = order.refundable_amount if amount is None else amount
        if amount <= 0:
            raise ValidationError({"amount": ["Amount must be positive"]})
        if amount > order.refundable_amount + _AMOUNT_TOLERANCE:
            raise ValidationError({"amount": [f"Refund of {amount} exceeds the refundable {order.refundable_amount}"]})

        if order.payment_method == PaymentMethod.CASH.value:
            # Cash goes back over the counter; nothing to ask the gateway.
            result = GatewayResult(success=True, status="success", request={"amount": amount, "reason": reason})
        else:
            result = self.gateway.refund(order.transaction_id, amount, reason)
        self._log(order, PaymentAction.REFUND, result, amount, transaction_id=order.transaction_id)

        if result.success:
            order.record_refund(amount)
            logger.info("Payment refunded", order_number=order.order_number, amount=amount)
        else:
            logger.warning("Payment refund failed", order_number=order.order_number, reason=result.failure_reason)
        return self._outcome(order, PaymentAction.REFUND, result, amount)

    def confirm_cash(self, order: Order) -> PaymentOutcome:
        """Operator confirms cash was collected; the gateway is not involved."""
        if order.payment_method != PaymentMethod.CASH.value:
            raise ValidationError({"payment_method": ["Only cash orders can be confirmed as paid in cash"]})
        self._require_status(order, {PaymentStatus.PENDING}, "confirm")
        self._require_weights(order)

        amount = order.amount_due
        result = GatewayResult(success=True, status="success", request={"collected": amount})
        self._log(order, PaymentAction.CAPTURE, result, amount)
        order.record_capture(amount)
        logger.info("Cash payment confirmed", order_number=order.order_number, amount=amount)
        return self._outcome(order, PaymentAction.CAPTURE, result, amount)

    # -------------------------------------------------------------------
    # Gateway-initiated updates
    # -------------------------------------------------------------------
    def reconcile(self, order: Order) -> PaymentOutcome:
        """Ask the gateway for the transaction's state and project it.

        Used after a timeout, when neither success nor failure can be assumed.
        """
        if not order.transaction_id:
            raise ValidationError({"transaction_id": ["Order has no gateway transaction"]})

        result = self.gateway.check_status(order.transaction_id)
        self._log(order, PaymentAction.CHECK, result, 0.0, transaction_id=order.transaction_id)
        if not result.success:
            return self._outcome(order, PaymentAction.CHECK, result, 0.0)

        reported = (result.response or {}).get("amount")
        current = PaymentStatus(order.payment_status)
        status = result.status

        if status == CAPTURED and current == PaymentStatus.AUTHORIZED:
            order.record_capture(float(reported) if reported is not None else order.amount_due)
        elif status == ACCEPTED and current in (PaymentStatus.PENDING, PaymentStatus.FAILED):
            request = self.ledger.authorization_request(order.transaction_id)
            order.record_authorization(order.transaction_id, request.amount if request else float(reported or 0))
        elif status in (REFUSED, CANCELLED) and current in (PaymentStatus.PENDING, PaymentStatus.AUTHORIZED):
            order.record_payment_failure(f"Gateway reports {status}")
        elif status == VOIDED and current in (PaymentStatus.PENDING, PaymentStatus.AUTHORIZED):
            order.record_void()
        elif status == REFUNDED and current == PaymentStatus.PAID:
            order.record_refund(order.refundable_amount)

        logger.info(
            "Payment reconciled",
            order_number=order.order_number,
            gateway_status=status,
            payment_status=order.payment_status,
        )
        return PaymentOutcome(
            success=True,
            action=PaymentAction.CHECK.value,
            payment_status=order.payment_status,
            transaction_id=order.transaction_id,
        )

    def apply_callback(self, order: Order, callback: PaymentCallback) -> PaymentOutcome:
        """Apply a verified gateway callback exactly once."""
        status = callback.status.upper()
        settled = self.ledger.settled_callback(callback.transaction_id)
        if settled is not None:
            if settled.gateway_status == status and abs((settled.amount or 0) - callback.amount) <= _AMOUNT_TOLERANCE:
                logger.info("Duplicate payment callback ignored", transaction_id=callback.transaction_id)
                return PaymentOutcome(
                    success=True,
                    action=PaymentAction.CALLBACK.value,
                    payment_status=order.payment_status,
                    amount=callback.amount,
                    transaction_id=callback.transaction_id,
                    duplicate=True,
                )
            logger.warning(
                "Conflicting payment callback replay rejected",
                transaction_id=callback.transaction_id,
                applied_status=settled.gateway_status,
                replayed_status=status,
                replayed_amount=callback.amount,
            )
            raise CallbackRejected(f"Callback for {callback.transaction_id} conflicts with the applied one")

        request = self.ledger.authorization_request(callback.transaction_id)
        if request is None or str(request.order_id) != str(order.id):
            logger.warning("Payment callback for unknown transaction", transaction_id=callback.transaction_id)
            raise CallbackRejected(f"Unknown transaction {callback.transaction_id}")
        if abs(request.amount - callback.amount) > _AMOUNT_TOLERANCE:
            logger.warning(
                "Payment callback amount mismatch",
                transaction_id=callback.transaction_id,
                expected=request.amount,
                received=callback.amount,
            )
            raise CallbackRejected(f"Amount {callback.amount} does not match the requested {request.amount}")

        log_status = _CALLBACK_LOG_STATUS.get(status)
        if log_status is None:
            raise ValidationError({"status": [f"Unknown gateway status {callback.status}"]})

        error = None
        current = PaymentStatus(order.payment_status)
        if status == ACCEPTED:
            latest = self.ledger.latest_authorization_request(str(order.id))
            superseded = latest is not None and latest.transaction_id != callback.transaction_id
            awaiting = current in (PaymentStatus.PENDING, PaymentStatus.FAILED) or (
                current == PaymentStatus.AUTHORIZED and order.transaction_id != callback.transaction_id
            )
            if superseded:
                error = f"not applied: superseded by {latest.transaction_id}"
            elif awaiting:
                self._switch_authorization(order, callback.transaction_id, request.amount)
            elif current != PaymentStatus.AUTHORIZED:
                error = f"not applied: payment is {order.payment_status}"
        elif status in (REFUSED, CANCELLED):
            if current == PaymentStatus.PENDING and order.transaction_id == callback.transaction_id:
                order.record_payment_failure(f"Gateway reports {status}")
            else:
                error = f"not applied: payment is {order.payment_status}"

        if error:
            logger.warning(
                "Payment callback not applicable",
                transaction_id=callback.transaction_id,
                gateway_status=status,
                payment_status=order.payment_status,
                reason=error,
            )

        self.ledger.append(
            PaymentLog.entry(
                order,
                PaymentAction.CALLBACK,
                log_status,
                amount=callback.amount,
                transaction_id=callback.transaction_id,
                request=callback.payload,
                error=error,
                gateway_status=status,
            )
        )
        return PaymentOutcome(
            success=error is None,
            action=PaymentAction.CALLBACK.value,
            payment_status=order.payment_status,
            amount=callback.amount,
            transaction_id=callback.transaction_id,
            error=error,
        )
