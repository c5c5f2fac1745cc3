"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- FakeGateway for development and testing (default)
- HttpPaymentGateway when ``SHOP_PAYMENT_ADAPTER=http``
"""

from settlement.config import get_settings
from settlement.gateway.fake_adapter import FakeGateway
from settlement.gateway.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway."""
    global _current_gateway
    if _current_gateway is None:
        settings = get_settings()
        if settings.payment_adapter == "fake":
            _current_gateway = FakeGateway()
        elif settings.payment_adapter == "http":
            from settlement.gateway.http_adapter import HttpPaymentGateway

            _current_gateway = HttpPaymentGateway(
                api_url=settings.payment_api_url,
                api_key=settings.payment_api_key,
                site_id=settings.payment_site_id,
                timeout=settings.payment_timeout,
                connect_timeout=settings.payment_connect_timeout,
                notify_url=settings.payment_notify_url,
            )
        else:
            raise ValueError(f"Unknown payment adapter: {settings.payment_adapter}")
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None
