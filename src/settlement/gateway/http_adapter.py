"""HTTP payment gateway adapter (CinetPay-style JSON API).

Every call has a bounded timeout. A timeout is reported as a failed result
with ``timed_out=True``; the caller must reconcile against the gateway rather
than assume either outcome.
"""

import httpx
import structlog

from settlement.gateway.port import GatewayResult, PaymentGateway

logger = structlog.get_logger(__name__)

_SUCCESS_CODES = {"00", "201"}


class HttpPaymentGateway(PaymentGateway):
    def __init__(
        self,
        api_url: str,
        api_key: str,
        site_id: str,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        notify_url: str = "",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.site_id = site_id
        self.timeout = httpx.Timeout(timeout, connect=connect_timeout)
        self.notify_url = notify_url
        self._transport = transport

    def _post(self, path: str, body: dict) -> GatewayResult:
        transaction_id = body.get("transaction_id")
        if not (self.api_key and self.site_id):
            return GatewayResult(
                success=False,
                status="failed",
                transaction_id=transaction_id,
                failure_reason="Payment gateway not configured",
                request=body,
            )

        payload = {"apikey": self.api_key, "site_id": self.site_id, **body}
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(f"{self.api_url}{path}", json=payload)
            data = response.json()
        except httpx.TimeoutException as exc:
            logger.error("Payment gateway timeout", path=path, transaction_id=transaction_id)
            return GatewayResult(
                success=False,
                status="failed",
                transaction_id=transaction_id,
                failure_reason=f"Gateway timeout: {exc}",
                timed_out=True,
                retryable=True,
                request=body,
            )
        except httpx.HTTPError as exc:
            logger.error("Payment gateway unreachable", path=path, error=str(exc))
            return GatewayResult(
                success=False,
                status="failed",
                transaction_id=transaction_id,
                failure_reason=str(exc) or type(exc).__name__,
                retryable=True,
                request=body,
            )
        except ValueError:
            logger.error("Malformed payment gateway response", path=path, status_code=response.status_code)
            return GatewayResult(
                success=False,
                status="failed",
                transaction_id=transaction_id,
                failure_reason=f"Malformed gateway response (HTTP {response.status_code})",
                retryable=response.is_server_error,
                request=body,
            )

        if not isinstance(data, dict):
            data = {"data": data}
        code = str(data.get("code", ""))
        details = data.get("data") or {}
        if response.is_success and code in _SUCCESS_CODES:
            return GatewayResult(
                success=True,
                status="pending" if code == "201" else "success",
                transaction_id=transaction_id,
                payment_url=details.get("payment_url"),
                payment_token=details.get("payment_token"),
                reference_number=details.get("operator_id") or details.get("reference"),
                request=body,
                response=data,
            )
        return GatewayResult(
            success=False,
            status="failed",
            transaction_id=transaction_id,
            failure_reason=data.get("message") or f"HTTP {response.status_code}",
            retryable=response.status_code >= 500,
            request=body,
            response=data,
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
        return self._post(
            "/payment",
            {
                "transaction_id": transaction_id,
                "amount": int(round(amount)),
                "currency": currency,
                "description": metadata.get("description", "Order payment"),
                "customer_name": customer.get("name", ""),
                "customer_phone_number": customer.get("phone", ""),
                "customer_email": customer.get("email", ""),
                "notify_url": self.notify_url,
                "metadata": metadata,
                "preauth": preauthorize,
            },
        )

    def capture(self, transaction_id: str, amount: float) -> GatewayResult:
        return self._post("/payment/capture", {"transaction_id": transaction_id, "amount": int(round(amount))})

    def void(self, transaction_id: str) -> GatewayResult:
        return self._post("/payment/void", {"transaction_id": transaction_id})

    def refund(self, transaction_id: str, amount: float, reason: str) -> GatewayResult:
        return self._post(
            "/payment/refund",
            {"transaction_id": transaction_id, "amount": int(round(amount)), "reason": reason},
        )

    def check_status(self, transaction_id: str) -> GatewayResult:
        result = self._post("/payment/check", {"transaction_id": transaction_id})
        if not result.success:
            return result
        details = result.response.get("data") or {}
        return GatewayResult(
            success=True,
            status=str(details.get("status", "PENDING")).upper(),
            transaction_id=transaction_id,
            reference_number=result.reference_number,
            request=result.request,
            response={"status": details.get("status"), "amount": details.get("amount")},
        )
