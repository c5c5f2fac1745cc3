"""PaymentLog aggregate — the append-only payment ledger.

One row per gateway interaction (or cash confirmation), written even when the
call failed. Rows are never updated; the Order's ``payment_status`` is a
projection, the ledger is the record used for reconciliation and disputes.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean.fields import DateTime, Float, Identifier, String, Text
from protean.utils.globals import current_domain

from settlement.domain import settlement


class PaymentAction(Enum):
    INITIATE = "initiate"
    PREAUTH = "preauth"
    CAPTURE = "capture"
    REFUND = "refund"
    VOID = "void"
    CALLBACK = "callback"
    CHECK = "check"


class PaymentLogStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


_AUTHORIZING_ACTIONS = (PaymentAction.PREAUTH.value, PaymentAction.INITIATE.value)


@settlement.aggregate
class PaymentLog:
    order_id = Identifier(required=True)
    order_number = String(max_length=40)
    transaction_id = String(max_length=100)
    payment_method = String(max_length=30)
    action = String(choices=PaymentAction, required=True)
    status = String(choices=PaymentLogStatus, required=True)
    amount = Float(default=0.0)
    currency = String(max_length=3, default="XOF")
    gateway_status = String(max_length=30)
    request_data = Text()  # JSON
    response_data = Text()  # JSON
    error_message = String(max_length=500)
    reference_number = String(max_length=100)
    created_at = DateTime()

    @classmethod
    def entry(
        cls,
        order,
        action: PaymentAction,
        status: PaymentLogStatus,
        amount: float = 0.0,
        transaction_id: str | None = None,
        request: dict | None = None,
        response: dict | None = None,
        error: str | None = None,
        reference_number: str | None = None,
        gateway_status: str | None = None,
    ):
        return cls(
            order_id=str(order.id),
            order_number=order.order_number,
            transaction_id=transaction_id or order.transaction_id,
            payment_method=order.payment_method,
            action=action.value,
            status=status.value,
            amount=amount,
            currency=order.currency,
            gateway_status=gateway_status,
            request_data=json.dumps(request or {}, default=str),
            response_data=json.dumps(response or {}, default=str),
            error_message=error[:500] if error else None,
            reference_number=reference_number,
            created_at=datetime.now(UTC),
        )


class PaymentLedger:
    """Append and query access to PaymentLog rows."""

    def __init__(self) -> None:
        self.repo = current_domain.repository_for(PaymentLog)

    def append(self, log: PaymentLog) -> PaymentLog:
        self.repo.add(log)
        return log

    def _filter(self, **criteria) -> list[PaymentLog]:
        items = self.repo._dao.query.filter(**criteria).all().items
        return sorted(items, key=lambda log: log.created_at)

    def for_order(self, order_id: str) -> list[PaymentLog]:
        return self._filter(order_id=order_id)

    def for_transaction(self, transaction_id: str) -> list[PaymentLog]:
        return self._filter(transaction_id=transaction_id)

    def authorization_request(self, transaction_id: str) -> PaymentLog | None:
        """The preauth/initiate row that opened a transaction."""
        for log in self.for_transaction(transaction_id):
            if log.action in _AUTHORIZING_ACTIONS:
                return log
        return None

    def latest_authorization_request(self, order_id: str) -> PaymentLog | None:
        """The most recent preauth/initiate row for an order that the gateway did not decline."""
        for log in reversed(self.for_order(order_id)):
            if log.action in _AUTHORIZING_ACTIONS and log.status != PaymentLogStatus.FAILED.value:
                return log
        return None

    def settled_callback(self, transaction_id: str) -> PaymentLog | None:
        """The callback already applied for a transaction, if any."""
        for log in self.for_transaction(transaction_id):
            if log.action == PaymentAction.CALLBACK.value and log.status != PaymentLogStatus.PENDING.value:
                return log
        return None
