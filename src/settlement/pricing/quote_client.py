"""External delivery pricing API client.

Returns a QuoteResult instead of raising: every transport or parsing problem
becomes a QuoteFailed so the fee calculator can fall back deterministically.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx
import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Quoted:
    amount: float


@dataclass(frozen=True)
class QuoteFailed:
    reason: str


QuoteResult = Quoted | QuoteFailed


class FeeQuoteClient(ABC):
    """Abstract external pricing interface."""

    @abstractmethod
    def estimate(self, address: str, order_amount: float) -> QuoteResult: ...


class HttpFeeQuoteClient(FeeQuoteClient):
    """Courier pricing endpoint (``POST /pricing/estimate``)."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        timeout: float = 3.0,
        pickup: dict | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.pickup = pickup or {}
        self._transport = transport

    def estimate(self, address: str, order_amount: float) -> QuoteResult:
        payload = {
            "pickup": self.pickup,
            "dropoff": {"address": address},
            "order_amount": order_amount,
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(
                    f"{self.api_url}/pricing/estimate",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
            response.raise_for_status()
            amount = float(response.json()["total_price"])
        except httpx.HTTPError as exc:
            logger.warning("Delivery fee quote failed", error=str(exc))
            return QuoteFailed(reason=str(exc) or type(exc).__name__)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Delivery fee quote malformed", error=str(exc))
            return QuoteFailed(reason="malformed response")

        if amount < 0:
            return QuoteFailed(reason="negative quote")
        return Quoted(amount=amount)
