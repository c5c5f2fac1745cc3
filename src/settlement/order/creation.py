"""Order placement — command and handler.

Placing an order validates the cart against the catalog, prices it (delivery
fee included), holds stock and persists the Order in one unit of work. If the
stock hold is refused nothing is persisted; if anything fails after the hold
was taken, the hold is released before the error propagates.
"""

import json
import secrets
from datetime import UTC, date, datetime

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import String, Text
from protean.utils.globals import current_domain

from settlement.catalog import get_catalog
from settlement.catalog.port import CatalogPort
from settlement.config import Settings, get_settings
from settlement.dispatch import get_dispatcher
from settlement.domain import settlement
from settlement.order.order import DeliveryMethod, Order, PaymentMethod
from settlement.pricing import get_fee_calculator
from settlement.shared.errors import DispatchUnavailable
from settlement.stock import get_stock_manager
from settlement.stock.manager import StockRejection
from settlement.weighing import get_reconciliation_service
from settlement.weighing.reconciliation import WeightReconciliationService, to_money

logger = structlog.get_logger(__name__)


def generate_order_number(prefix: str, now: datetime | None = None) -> str:
    """``CMD-20260115-3FA9C1`` style human-readable order number."""
    now = now or datetime.now(UTC)
    return f"{prefix}-{now.strftime('%Y%m%d')}-{secrets.token_hex(3).upper()}"


def build_order_lines(
    cart: list[dict],
    catalog: CatalogPort,
    weighing: WeightReconciliationService,
    default_weight_grams: int,
) -> list[dict]:
    """Validate cart lines against the catalog and snapshot them as order items."""
    if not cart:
        raise ValidationError({"items": ["Cart is empty"]})

    lines = []
    for entry in cart:
        sku_id = str(entry.get("sku_id") or "")
        quantity = entry.get("quantity")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError({"quantity": [f"Quantity for {sku_id} must be a positive whole number"]})

        sku = catalog.lookup(sku_id)
        if sku is None:
            raise ValidationError({"items": [f"Unknown product {sku_id}"]})
        if not sku.is_active:
            raise ValidationError({"items": [f"Product {sku.name} is no longer available"]})

        line = {
            "sku_id": sku.sku_id,
            "sku_code": sku.code,
            "product_name": sku.name,
            "unit": sku.unit,
            "unit_price": sku.price,
            "quantity": quantity,
            "unit_weight_grams": sku.weight_grams,
            "is_variable_weight": sku.is_variable_weight,
        }
        if sku.is_variable_weight:
            per_piece = int(entry.get("estimated_weight_grams") or default_weight_grams)
            if per_piece <= 0:
                raise ValidationError({"estimated_weight_grams": ["Estimated weight must be positive"]})
            estimated_kg = per_piece * quantity / 1000
            line.update(
                min_weight_grams=sku.min_weight_grams,
                max_weight_grams=sku.max_weight_grams,
                estimated_weight_grams=per_piece,
                estimated_quantity=estimated_kg,
                estimated_price=weighing.estimate_price(sku.price, estimated_kg),
                subtotal=to_money(sku.price * estimated_kg),
            )
        else:
            line["subtotal"] = to_money(sku.price * quantity)
        lines.append(line)
    return lines


def _validate_fulfilment(command, subtotal: float, settings: Settings, today: date) -> None:
    if command.delivery_method == DeliveryMethod.DELIVERY.value:
        if not (command.delivery_address or "").strip():
            raise ValidationError({"delivery_address": ["Delivery address is required"]})
        if subtotal < settings.min_delivery_amount:
            raise ValidationError(
                {"delivery_method": [f"Delivery requires a minimum order of {settings.min_delivery_amount:g}"]}
            )
        return

    if not command.pickup_date:
        raise ValidationError({"pickup_date": ["Pickup date is required"]})
    try:
        pickup_on = date.fromisoformat(command.pickup_date)
    except ValueError:
        raise ValidationError({"pickup_date": ["Pickup date must be YYYY-MM-DD"]}) from None
    if pickup_on < today:
        raise ValidationError({"pickup_date": ["Pickup date is in the past"]})
    if command.pickup_time_slot not in settings.pickup_slot_list:
        raise ValidationError({"pickup_time_slot": [f"Unknown pickup slot {command.pickup_time_slot}"]})


@settlement.command(part_of="Order")
class PlaceOrder:
    """Turn a cart into a pending order."""

    customer_name = String(required=True, max_length=200)
    customer_phone = String(required=True, max_length=30)
    customer_email = String(max_length=254)
    delivery_method = String(required=True, choices=DeliveryMethod)
    delivery_address = String(max_length=500)
    delivery_instructions = String(max_length=500)
    pickup_date = String(max_length=10)
    pickup_time_slot = String(max_length=20)
    payment_method = String(choices=PaymentMethod, default=PaymentMethod.CASH.value)
    items = Text(required=True)  # JSON list of {sku_id, quantity, estimated_weight_grams?}


@settlement.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        settings = get_settings()
        lines = build_order_lines(
            json.loads(command.items),
            get_catalog(),
            get_reconciliation_service(),
            settings.default_estimated_weight_grams,
        )
        subtotal = to_money(sum(line["subtotal"] for line in lines))
        _validate_fulfilment(command, subtotal, settings, datetime.now(UTC).date())

        delivery_fee, delivery_zone = 0.0, None
        if command.delivery_method == DeliveryMethod.DELIVERY.value:
            fee = get_fee_calculator().quote(command.delivery_address, subtotal)
            delivery_fee, delivery_zone = fee.amount, fee.zone

        order_number = generate_order_number(settings.order_number_prefix)
        stock = get_stock_manager()
        reservation = stock.reserve(
            [{"sku_id": line["sku_id"], "quantity": line["quantity"]} for line in lines],
            reference=order_number,
        )
        if isinstance(reservation, StockRejection):
            raise ValidationError({"items": [reservation.message]})

        booked_delivery = None
        try:
            order = Order.place(
                order_number=order_number,
                customer={
                    "name": command.customer_name,
                    "phone": command.customer_phone,
                    "email": command.customer_email,
                },
                delivery_method=command.delivery_method,
                payment_method=command.payment_method or PaymentMethod.CASH.value,
                items_data=lines,
                delivery_fee=delivery_fee,
                reservation_id=reservation.reservation_id,
                currency=settings.currency,
                delivery_address=command.delivery_address,
                delivery_instructions=command.delivery_instructions,
                delivery_zone=delivery_zone,
                pickup_date=command.pickup_date,
                pickup_time_slot=command.pickup_time_slot,
            )

            if settings.dispatch_on_checkout and command.delivery_method == DeliveryMethod.DELIVERY.value:
                result = get_dispatcher().create_delivery(order)
                if not result.success:
                    raise DispatchUnavailable(result.error or "Delivery dispatch failed", retryable=result.retryable)
                booked_delivery = result.delivery_id
                order.record_dispatch(result.delivery_id, result.tracking_url, result.estimated_time)

            current_domain.repository_for(Order).add(order)
        except Exception:
            stock.release(reservation.reservation_id, reason="checkout_failed")
            if booked_delivery:
                logger.warning("Cancelling courier booked for a failed checkout", delivery_id=booked_delivery)
                get_dispatcher().cancel(booked_delivery, reason="Checkout failed")
            raise

        logger.info(
            "Order placed",
            order_id=str(order.id),
            order_number=order_number,
            total_amount=order.total_amount,
            delivery_fee=delivery_fee,
        )
        return str(order.id)
