"""Pydantic request/response schemas for the Settlement API.

These are external contracts (anti-corruption layer) — separate from
internal Protean commands.
"""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------
class CartLineSchema(BaseModel):
    sku_id: str
    quantity: int = Field(ge=1)
    estimated_weight_grams: int | None = Field(default=None, gt=0)  # per piece, variable-weight only


class CustomerSchema(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    phone: str = Field(min_length=1, max_length=30)
    email: str | None = None


class CheckoutRequest(BaseModel):
    customer: CustomerSchema
    delivery_method: Literal["pickup", "delivery"]
    delivery_address: str | None = None
    delivery_instructions: str | None = None
    pickup_date: date | None = None
    pickup_time_slot: str | None = None
    payment_method: Literal["cash", "card", "mobile_money"] = "cash"
    items: list[CartLineSchema]

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "customer": {"name": "Awa Koné", "phone": "07 07 12 34 56"},
                    "delivery_method": "delivery",
                    "delivery_address": "Rue des Jardins, Cocody",
                    "payment_method": "card",
                    "items": [
                        {"sku_id": "sku-rice-5kg", "quantity": 2},
                        {"sku_id": "sku-beef", "quantity": 1, "estimated_weight_grams": 1500},
                    ],
                }
            ]
        }
    }


class OrderIdResponse(BaseModel):
    order_id: str


# ---------------------------------------------------------------------------
# Order read model
# ---------------------------------------------------------------------------
class OrderItemResponse(BaseModel):
    item_id: str
    sku_id: str
    product_name: str
    unit: str | None = None
    unit_price: float
    quantity: int
    subtotal: float
    is_variable_weight: bool = False
    estimated_weight_grams: int | None = None
    estimated_price: float | None = None
    actual_weight_grams: int | None = None
    final_price: float | None = None
    weight_deviation: float | None = None
    requires_review: bool = False


class OrderResponse(BaseModel):
    order_id: str
    order_number: str
    status: str
    customer_name: str
    customer_phone: str
    delivery_method: str
    delivery_address: str | None = None
    delivery_zone: str | None = None
    pickup_date: str | None = None
    pickup_time_slot: str | None = None
    currency: str
    subtotal: float
    delivery_fee: float
    total_amount: float
    estimated_total: float | None = None
    final_total: float | None = None
    weight_review_required: bool = False
    payment_method: str
    payment_status: str
    transaction_id: str | None = None
    payment_url: str | None = None
    authorized_amount: float = 0.0
    captured_amount: float = 0.0
    refunded_amount: float = 0.0
    delivery_id: str | None = None
    delivery_status: str | None = None
    tracking_url: str | None = None
    cancellation_reason: str | None = None
    cancellation_failures: list[dict] = []
    items: list[OrderItemResponse]


# ---------------------------------------------------------------------------
# Operator actions
# ---------------------------------------------------------------------------
class ConfirmWeightsRequest(BaseModel):
    weights: dict[str, int]  # item_id -> actual grams for the whole line


class WeightsResponse(BaseModel):
    status: str = "ok"
    final_total: float | None = None


class CancelOrderRequest(BaseModel):
    reason: str = Field(default="Cancelled by request", max_length=500)


class CancellationResponse(BaseModel):
    order_id: str
    status: str
    completed: bool
    failures: list[dict] = []


class StatusResponse(BaseModel):
    status: str = "ok"


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
class AuthorizePaymentRequest(BaseModel):
    amount: float | None = Field(default=None, gt=0)


class CapturePaymentRequest(BaseModel):
    amount: float | None = Field(default=None, gt=0)


class RefundPaymentRequest(BaseModel):
    amount: float | None = Field(default=None, gt=0)
    reason: str = Field(default="Refund requested", max_length=255)


class PaymentOutcomeResponse(BaseModel):
    success: bool
    action: str
    payment_status: str
    amount: float = 0.0
    transaction_id: str | None = None
    payment_url: str | None = None
    error: str | None = None
    retryable: bool = False
    needs_reconciliation: bool = False
    duplicate: bool = False


class PaymentLogResponse(BaseModel):
    log_id: str
    action: str
    status: str
    amount: float
    currency: str
    transaction_id: str | None = None
    gateway_status: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None


class PaymentLogListResponse(BaseModel):
    logs: list[PaymentLogResponse]


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------
class FeeQuoteRequest(BaseModel):
    address: str = Field(min_length=1)
    order_amount: float = Field(ge=0)


class FeeQuoteResponse(BaseModel):
    amount: float
    zone: str | None = None
    source: str


class SlotsResponse(BaseModel):
    on: date
    slots: list[str]


class TrackingResponse(BaseModel):
    delivery_id: str
    status: str | None = None
    driver: dict | None = None
    current_location: dict | None = None
    estimated_arrival: str | None = None
    tracking_url: str | None = None


class SweepResponse(BaseModel):
    released: int


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------
class PaymentCallbackPayload(BaseModel):
    transaction_id: str
    status: str
    amount: float


class DeliveryWebhookPayload(BaseModel):
    delivery_id: str
    status: str
    estimated_arrival: str | None = None


class WebhookResponse(BaseModel):
    status: str = "ok"
    applied: bool = True
