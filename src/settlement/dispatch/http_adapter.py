"""HTTP delivery gateway adapter (Yango-style REST API, bearer auth)."""

import httpx
import structlog

from settlement.dispatch.port import CancelResult, DeliveryGateway, DispatchResult, TrackingStatus

logger = structlog.get_logger(__name__)


class HttpDeliveryGateway(DeliveryGateway):
    def __init__(
        self,
        api_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _request(self, method: str, path: str, body: dict | None = None) -> tuple[dict | None, str | None, bool]:
        """Returns (json, error, retryable)."""
        if not self.api_key:
            return None, "Delivery service unavailable: API key not configured", False
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.request(
                    method,
                    f"{self.api_url}{path}",
                    json=body,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as exc:
            logger.error("Delivery gateway unreachable", path=path, error=str(exc))
            return None, str(exc) or type(exc).__name__, True

        if not response.is_success:
            logger.error("Delivery gateway error", path=path, status_code=response.status_code)
            return None, f"HTTP {response.status_code}: {response.text[:200]}", response.status_code >= 500
        try:
            data = response.json()
        except ValueError:
            return None, "Malformed delivery gateway response", True
        return (data if isinstance(data, dict) else {}), None, False

    def create_delivery(self, payload: dict) -> DispatchResult:
        data, error, retryable = self._request("POST", "/deliveries", payload)
        if error is not None:
            return DispatchResult(success=False, error=error, retryable=retryable)
        if not data.get("id"):
            return DispatchResult(success=False, error="Delivery gateway returned no delivery id", retryable=True)
        return DispatchResult(
            success=True,
            delivery_id=str(data["id"]),
            tracking_url=data.get("tracking_url"),
            estimated_time=data.get("estimated_time"),
        )

    def get_status(self, delivery_id: str) -> TrackingStatus:
        data, error, retryable = self._request("GET", f"/deliveries/{delivery_id}")
        if error is not None:
            return TrackingStatus(success=False, error=error, retryable=retryable)
        return TrackingStatus(
            success=True,
            status=data.get("status"),
            driver=data.get("driver"),
            current_location=data.get("current_location"),
            estimated_arrival=data.get("estimated_arrival"),
            tracking_url=data.get("tracking_url"),
        )

    def cancel(self, delivery_id: str, reason: str) -> CancelResult:
        _, error, retryable = self._request("POST", f"/deliveries/{delivery_id}/cancel", {"reason": reason})
        if error is not None:
            return CancelResult(success=False, error=error, retryable=retryable)
        return CancelResult(success=True)
