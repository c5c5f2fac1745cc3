"""Payment gateway port (abstract interface).

Defines the contract that all payment gateway adapters must implement.
Adapters never raise for gateway-side problems: declines, transport errors
and timeouts all come back as a GatewayResult so the orchestrator can log
every attempt before deciding what to do.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class GatewayResult:
    """Outcome of one gateway call."""

    success: bool
    status: str  # success, pending, failed
    transaction_id: str | None = None
    payment_url: str | None = None
    payment_token: str | None = None
    reference_number: str | None = None
    failure_reason: str | None = None
    timed_out: bool = False
    retryable: bool = False
    request: dict = field(default_factory=dict)
    response: dict = field(default_factory=dict)


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def authorize(
        self,
        transaction_id: str,
        amount: float,
        currency: str,
        preauthorize: bool,
        customer: dict,
        metadata: dict,
    ) -> GatewayResult:
        """Reserve (or, without ``preauthorize``, initiate) a payment."""
        ...

    @abstractmethod
    def capture(self, transaction_id: str, amount: float) -> GatewayResult:
        """Capture part or all of an authorized amount."""
        ...

    @abstractmethod
    def void(self, transaction_id: str) -> GatewayResult:
        """Release an authorization without capturing."""
        ...

    @abstractmethod
    def refund(self, transaction_id: str, amount: float, reason: str) -> GatewayResult:
        """Refund a captured payment."""
        ...

    @abstractmethod
    def check_status(self, transaction_id: str) -> GatewayResult:
        """Ask the gateway what it knows about a transaction.

        ``status`` is one of the gateway's callback statuses
        (ACCEPTED, REFUSED, CANCELLED, PENDING).
        """
        ...
