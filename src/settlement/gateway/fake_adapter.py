"""Configurable fake payment gateway for development and testing.

Simulates authorizations, captures, voids and refunds without external calls.
It can be configured at runtime to succeed, decline, answer "pending"
(hosted payment page) or time out.
"""

from uuid import uuid4

from settlement.gateway.port import GatewayResult, PaymentGateway


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.pending_authorization: bool = False
        self.timeout_on: set[str] = set()
        self.transaction_status: str = "ACCEPTED"
        self.transaction_amount: float | None = None
        self.calls: list[dict] = []

    def configure(
        self,
        should_succeed: bool,
        failure_reason: str = "Card declined",
        pending_authorization: bool = False,
        timeout_on: set[str] | None = None,
        transaction_status: str = "ACCEPTED",
        transaction_amount: float | None = None,
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.pending_authorization = pending_authorization
        self.timeout_on = set(timeout_on or ())
        self.transaction_status = transaction_status
        self.transaction_amount = transaction_amount

    def _respond(self, method: str, request: dict, **success_fields) -> GatewayResult:
        self.calls.append({"method": method, **request})

        if method in self.timeout_on:
            return GatewayResult(
                success=False,
                status="failed",
                transaction_id=request.get("transaction_id"),
                failure_reason="Gateway timeout",
                timed_out=True,
                retryable=True,
                request=request,
            )
        if not self.should_succeed:
            return GatewayResult(
                success=False,
                status="failed",
                transaction_id=request.get("transaction_id"),
                failure_reason=self.failure_reason,
                request=request,
                response={"code": "REFUSED", "message": self.failure_reason},
            )
        return GatewayResult(
            success=True,
            status="success",
            transaction_id=request.get("transaction_id"),
            reference_number=f"fake_ref_{uuid4().hex[:12]}",
            request=request,
            response={"code": "00", "message": "SUCCES"},
            **success_fields,
        )

    def authorize(
        self,
        transaction_id: str,
        amount: float,
        currency: str,
        preauthorize: bool,
        customer: dict,
        metadata: dict,
    ) -> GatewayResult:
        request = {
            "transaction_id": transaction_id,
            "amount": amount,
            "currency": currency,
            "preauthorize": preauthorize,
            "customer": customer,
            "metadata": metadata,
        }
        if self.pending_authorization and self.should_succeed and "authorize" not in self.timeout_on:
            self.calls.append({"method": "authorize", **request})
            token = uuid4().hex
            return GatewayResult(
                success=True,
                status="pending",
                transaction_id=transaction_id,
                payment_token=token,
                payment_url=f"https://fake-gateway.example.com/pay/{token}",
                request=request,
                response={"code": "201", "message": "CREATED"},
            )
        return self._respond("authorize", request, payment_token=uuid4().hex)

    def capture(self, transaction_id: str, amount: float) -> GatewayResult:
        return self._respond("capture", {"transaction_id": transaction_id, "amount": amount})

    def void(self, transaction_id: str) -> GatewayResult:
        return self._respond("void", {"transaction_id": transaction_id})

    def refund(self, transaction_id: str, amount: float, reason: str) -> GatewayResult:
        return self._respond(
            "refund",
            {"transaction_id": transaction_id, "amount": amount, "reason": reason},
        )

    def check_status(self, transaction_id: str) -> GatewayResult:
        self.calls.append({"method": "check_status", "transaction_id": transaction_id})
        if "check_status" in self.timeout_on:
            return GatewayResult(
                success=False,
                status="failed",
                transaction_id=transaction_id,
                failure_reason="Gateway timeout",
                timed_out=True,
                retryable=True,
            )
        return GatewayResult(
            success=True,
            status=self.transaction_status,
            transaction_id=transaction_id,
            response={"status": self.transaction_status, "amount": self.transaction_amount},
        )
