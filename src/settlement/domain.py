"""Settlement bounded context — Order Settlement Engine.

Reserves inventory, prices and reconciles variable-weight goods, drives the
order/payment state machine and coordinates with the payment gateway and the
delivery-dispatch gateway.
"""

import structlog
from protean.domain import Domain

settlement = Domain(name="settlement")

logger = structlog.get_logger(__name__)
