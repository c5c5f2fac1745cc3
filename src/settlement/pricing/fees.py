"""Delivery Fee Calculator.

quote() never fails. Zone detection is a first-substring-match over an
ordered table; an external quote, when configured and successful, replaces
the zone's base fee and is cached by address hash for a bounded TTL.
"""

import hashlib
from dataclasses import dataclass

import structlog

from settlement.pricing.cache import FeeCache
from settlement.pricing.quote_client import FeeQuoteClient, Quoted

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DeliveryZone:
    key: str
    name: str
    base_fee: float


@dataclass(frozen=True)
class Fee:
    amount: float
    zone: str | None
    source: str  # zone, quote, cache, default


class DeliveryFeeCalculator:
    def __init__(
        self,
        zones: list[DeliveryZone],
        default_fee: float = 1500,
        surcharge_threshold: float = 50000,
        surcharge_amount: float = 500,
        quote_client: FeeQuoteClient | None = None,
        cache: FeeCache | None = None,
        cache_ttl: int = 300,
    ) -> None:
        self.zones = list(zones)
        self.default_fee = default_fee
        self.surcharge_threshold = surcharge_threshold
        self.surcharge_amount = surcharge_amount
        self.quote_client = quote_client
        self.cache = cache
        self.cache_ttl = cache_ttl

    def detect_zone(self, address: str | None) -> DeliveryZone | None:
        haystack = (address or "").lower()
        for zone in self.zones:
            if zone.name.lower() in haystack:
                return zone
        return None

    def quote(self, address: str | None, order_amount: float) -> Fee:
        zone = self.detect_zone(address)
        if zone is None:
            return Fee(amount=self.default_fee, zone=None, source="default")

        base, source = self._base_fee(address or "", order_amount, zone)
        # A courier quote is the full price; only the zone table gets the surcharge.
        if source == "zone" and order_amount > self.surcharge_threshold:
            base += self.surcharge_amount
        return Fee(amount=base, zone=zone.key, source=source)

    def _base_fee(self, address: str, order_amount: float, zone: DeliveryZone) -> tuple[float, str]:
        if self.quote_client is None:
            return zone.base_fee, "zone"

        key = self.cache_key(address)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached, "cache"

        result = self.quote_client.estimate(address, order_amount)
        if isinstance(result, Quoted):
            if self.cache is not None:
                self.cache.set(key, result.amount, self.cache_ttl)
            return result.amount, "quote"

        logger.info("Using zone fee after quote failure", zone=zone.key, reason=result.reason)
        return zone.base_fee, "zone"

    @staticmethod
    def cache_key(address: str) -> str:
        digest = hashlib.sha256(address.strip().lower().encode("utf-8")).hexdigest()
        return f"delivery_fee:{digest}"
