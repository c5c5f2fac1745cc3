"""Delivery dispatch — pluggable courier integration."""

from settlement.config import get_settings
from settlement.dispatch.dispatcher import DeliveryDispatcher
from settlement.dispatch.port import DeliveryGateway

_gateway_instance: DeliveryGateway | None = None


def get_delivery_gateway() -> DeliveryGateway:
    """Return the configured delivery gateway (singleton).

    Uses FakeDeliveryGateway by default. In production, configure via the
    SHOP_DELIVERY_ADAPTER environment variable.
    """
    global _gateway_instance
    if _gateway_instance is None:
        settings = get_settings()
        if settings.delivery_adapter == "fake":
            from settlement.dispatch.fake_adapter import FakeDeliveryGateway

            _gateway_instance = FakeDeliveryGateway()
        elif settings.delivery_adapter == "http":
            from settlement.dispatch.http_adapter import HttpDeliveryGateway

            _gateway_instance = HttpDeliveryGateway(
                api_url=settings.delivery_api_url,
                api_key=settings.delivery_api_key,
                timeout=settings.delivery_timeout,
            )
        else:
            raise ValueError(f"Unknown delivery adapter: {settings.delivery_adapter}")
    return _gateway_instance


def set_delivery_gateway(gateway: DeliveryGateway) -> None:
    """Override the active delivery gateway (useful for tests)."""
    global _gateway_instance
    _gateway_instance = gateway


def reset_delivery_gateway() -> None:
    """Reset the delivery gateway singleton (useful for testing)."""
    global _gateway_instance
    _gateway_instance = None


def get_dispatcher() -> DeliveryDispatcher:
    settings = get_settings()
    return DeliveryDispatcher(
        gateway=get_delivery_gateway(),
        pickup_location={
            "lat": settings.store_latitude,
            "lng": settings.store_longitude,
            "address": settings.store_address,
        },
        store_contact={"name": settings.store_name, "phone": settings.store_phone},
        webhook_url=settings.delivery_webhook_url,
    )
