"""Settlement API package."""

from settlement.api.errors import register_settlement_exception_handlers
from settlement.api.routes import delivery_router, order_router, webhook_router

__all__ = ["order_router", "delivery_router", "webhook_router", "register_settlement_exception_handlers"]
