"""Delivery fee calculator factory.

The external pricing client is only wired in when both the API URL and key
are configured; otherwise fees come from the zone table alone.
"""

from settlement.config import get_settings
from settlement.pricing.cache import FeeCache, InMemoryFeeCache
from settlement.pricing.fees import DeliveryFeeCalculator, DeliveryZone
from settlement.pricing.quote_client import FeeQuoteClient, HttpFeeQuoteClient

_current_cache: FeeCache | None = None
_current_client: FeeQuoteClient | None = None


def get_fee_cache() -> FeeCache:
    """Return the shared fee quote cache."""
    global _current_cache
    if _current_cache is None:
        _current_cache = InMemoryFeeCache()
    return _current_cache


def set_fee_cache(cache: FeeCache) -> None:
    global _current_cache
    _current_cache = cache


def set_quote_client(client: FeeQuoteClient | None) -> None:
    """Override the external pricing client (useful for tests)."""
    global _current_client
    _current_client = client


def reset_pricing() -> None:
    """Reset cache and pricing client to defaults."""
    global _current_cache, _current_client
    _current_cache = None
    _current_client = None


def _configured_client() -> FeeQuoteClient | None:
    if _current_client is not None:
        return _current_client
    settings = get_settings()
    if not (settings.fee_quote_api_url and settings.fee_quote_api_key):
        return None
    return HttpFeeQuoteClient(
        api_url=settings.fee_quote_api_url,
        api_key=settings.fee_quote_api_key,
        timeout=settings.fee_quote_timeout,
        pickup={
            "lat": settings.store_latitude,
            "lng": settings.store_longitude,
            "address": settings.store_address,
        },
    )


def get_fee_calculator() -> DeliveryFeeCalculator:
    """Build a calculator from the current settings."""
    settings = get_settings()
    return DeliveryFeeCalculator(
        zones=[DeliveryZone(key=z.key, name=z.name, base_fee=z.base_fee) for z in settings.delivery_zones],
        default_fee=settings.default_delivery_fee,
        surcharge_threshold=settings.large_order_threshold,
        surcharge_amount=settings.large_order_surcharge,
        quote_client=_configured_client(),
        cache=get_fee_cache(),
        cache_ttl=settings.fee_quote_cache_ttl,
    )
