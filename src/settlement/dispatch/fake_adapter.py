"""Fake delivery gateway — deterministic courier for testing and development.

Configurable success/failure behavior for integration testing.
"""

from uuid import uuid4

from settlement.dispatch.port import CancelResult, DeliveryGateway, DispatchResult, TrackingStatus


class FakeDeliveryGateway(DeliveryGateway):
    """Fake courier that always succeeds by default."""

    def __init__(self) -> None:
        self.should_succeed = True
        self.failure_reason = "Courier service unavailable"
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool = True, failure_reason: str = "Courier service unavailable") -> None:
        """Configure the fake courier behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def create_delivery(self, payload: dict) -> DispatchResult:
        self.calls.append({"method": "create_delivery", "payload": payload})
        if not self.should_succeed:
            return DispatchResult(success=False, error=self.failure_reason, retryable=True)

        delivery_id = f"dlv-{uuid4().hex[:10]}"
        return DispatchResult(
            success=True,
            delivery_id=delivery_id,
            tracking_url=f"https://fake-courier.example.com/track/{delivery_id}",
            estimated_time="45 min",
        )

    def get_status(self, delivery_id: str) -> TrackingStatus:
        self.calls.append({"method": "get_status", "delivery_id": delivery_id})
        if not self.should_succeed:
            return TrackingStatus(success=False, error=self.failure_reason, retryable=True)
        return TrackingStatus(
            success=True,
            status="in_transit",
            driver={"name": "Test Driver", "phone": "+2250700000001"},
            current_location={"lat": 5.35, "lng": -3.99},
            estimated_arrival="15 min",
            tracking_url=f"https://fake-courier.example.com/track/{delivery_id}",
        )

    def cancel(self, delivery_id: str, reason: str) -> CancelResult:
        self.calls.append({"method": "cancel", "delivery_id": delivery_id, "reason": reason})
        if not self.should_succeed:
            return CancelResult(success=False, error=self.failure_reason, retryable=True)
        return CancelResult(success=True)
