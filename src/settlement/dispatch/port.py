"""Delivery gateway port — abstract interface for the courier service.

All delivery adapters must implement this interface. The dispatcher programs
against the port; adapters are swapped via configuration.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of booking a courier."""

    success: bool
    delivery_id: str | None = None
    tracking_url: str | None = None
    estimated_time: str | None = None
    error: str | None = None
    retryable: bool = False


@dataclass(frozen=True)
class TrackingStatus:
    success: bool
    status: str | None = None
    driver: dict | None = None
    current_location: dict | None = None
    estimated_arrival: str | None = None
    tracking_url: str | None = None
    error: str | None = None
    retryable: bool = False


@dataclass(frozen=True)
class CancelResult:
    success: bool
    error: str | None = None
    retryable: bool = False


class DeliveryGateway(ABC):
    """Abstract interface for courier adapters."""

    @abstractmethod
    def create_delivery(self, payload: dict) -> DispatchResult:
        """Book a courier for the given delivery request."""
        ...

    @abstractmethod
    def get_status(self, delivery_id: str) -> TrackingStatus:
        """Get current status of a delivery."""
        ...

    @abstractmethod
    def cancel(self, delivery_id: str, reason: str) -> CancelResult:
        """Cancel a booked delivery."""
        ...
