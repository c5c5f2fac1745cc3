"""FastAPI routes for the Settlement domain — orders, delivery and webhooks.

Thin adapters that translate HTTP requests into domain commands.
Webhooks verify the body signature before anything is parsed. Handlers that
call the payment gateway, the courier or the fee quote service are plain
functions so FastAPI runs them in its threadpool instead of on the event loop.
"""

import json
from datetime import UTC, date, datetime

import structlog
from fastapi import APIRouter, Header, Request
from fastapi.concurrency import run_in_threadpool
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain
from pydantic import ValidationError as PayloadError

from settlement.api.schemas import (
    AuthorizePaymentRequest,
    CancellationResponse,
    CancelOrderRequest,
    CapturePaymentRequest,
    CheckoutRequest,
    ConfirmWeightsRequest,
    DeliveryWebhookPayload,
    FeeQuoteRequest,
    FeeQuoteResponse,
    OrderIdResponse,
    OrderItemResponse,
    OrderResponse,
    PaymentCallbackPayload,
    PaymentLogListResponse,
    PaymentLogResponse,
    PaymentOutcomeResponse,
    RefundPaymentRequest,
    SlotsResponse,
    StatusResponse,
    SweepResponse,
    TrackingResponse,
    WebhookResponse,
    WeightsResponse,
)
from settlement.config import get_settings
from settlement.dispatch import get_dispatcher
from settlement.dispatch.slots import available_slots
from settlement.order.cancellation import CancelOrder, RetryCancellation
from settlement.order.completion import CompleteOrder
from settlement.order.confirmation import ConfirmOrder
from settlement.order.creation import PlaceOrder
from settlement.order.delivery import RecordDeliveryStatus
from settlement.order.fulfillment import MarkReady, StartProcessing
from settlement.order.order import Order
from settlement.order.weights import ConfirmWeights
from settlement.payment.authorization import AuthorizePayment
from settlement.payment.callback import ProcessPaymentCallback, ReconcilePayment
from settlement.payment.capture import CapturePayment, ConfirmCashPayment
from settlement.payment.ledger import PaymentLedger
from settlement.payment.reversal import RefundPayment, VoidPayment
from settlement.pricing import get_fee_calculator
from settlement.shared.errors import DispatchUnavailable, InvalidSignature
from settlement.shared.signatures import verify_signature
from settlement.stock import get_stock_manager

logger = structlog.get_logger(__name__)


def _order_response(order: Order) -> OrderResponse:
    return OrderResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        status=order.status,
        customer_name=order.customer_name,
        customer_phone=order.customer_phone,
        delivery_method=order.delivery_method,
        delivery_address=order.delivery_address,
        delivery_zone=order.delivery_zone,
        pickup_date=order.pickup_date,
        pickup_time_slot=order.pickup_time_slot,
        currency=order.currency,
        subtotal=order.subtotal,
        delivery_fee=order.delivery_fee,
        total_amount=order.total_amount,
        estimated_total=order.estimated_total,
        final_total=order.final_total,
        weight_review_required=bool(order.weight_review_required),
        payment_method=order.payment_method,
        payment_status=order.payment_status,
        transaction_id=order.transaction_id,
        payment_url=order.payment_url,
        authorized_amount=order.authorized_amount or 0.0,
        captured_amount=order.captured_amount or 0.0,
        refunded_amount=order.refunded_amount or 0.0,
        delivery_id=order.delivery_id,
        delivery_status=order.delivery_status,
        tracking_url=order.tracking_url,
        cancellation_reason=order.cancellation_reason,
        cancellation_failures=order.pending_failures,
        items=[
            OrderItemResponse(
                item_id=str(item.id),
                sku_id=str(item.sku_id),
                product_name=item.product_name,
                unit=item.unit,
                unit_price=item.unit_price,
                quantity=item.quantity,
                subtotal=item.subtotal,
                is_variable_weight=bool(item.is_variable_weight),
                estimated_weight_grams=item.estimated_weight_grams,
                estimated_price=item.estimated_price,
                actual_weight_grams=item.actual_weight_grams,
                final_price=item.final_price,
                weight_deviation=item.weight_deviation,
                requires_review=bool(item.requires_review),
            )
            for item in order.items or []
        ],
    )


def _outcome_response(outcome) -> PaymentOutcomeResponse:
    return PaymentOutcomeResponse(
        success=outcome.success,
        action=outcome.action,
        payment_status=outcome.payment_status,
        amount=outcome.amount,
        transaction_id=outcome.transaction_id,
        payment_url=outcome.payment_url,
        error=outcome.error,
        retryable=outcome.retryable,
        needs_reconciliation=outcome.needs_reconciliation,
        duplicate=outcome.duplicate,
    )


def _cancellation_response(result) -> CancellationResponse:
    return CancellationResponse(
        order_id=result.order_id,
        status=result.status,
        completed=result.completed,
        failures=result.failures,
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=OrderIdResponse)
def checkout(body: CheckoutRequest) -> OrderIdResponse:
    """Turn a cart into an order: validate, price, hold stock."""
    command = PlaceOrder(
        customer_name=body.customer.name,
        customer_phone=body.customer.phone,
        customer_email=body.customer.email,
        delivery_method=body.delivery_method,
        delivery_address=body.delivery_address,
        delivery_instructions=body.delivery_instructions,
        pickup_date=body.pickup_date.isoformat() if body.pickup_date else None,
        pickup_time_slot=body.pickup_time_slot,
        payment_method=body.payment_method,
        items=json.dumps([line.model_dump(exclude_none=True) for line in body.items]),
    )
    order_id = current_domain.process(command, asynchronous=False)
    return OrderIdResponse(order_id=order_id)


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str) -> OrderResponse:
    order = current_domain.repository_for(Order).get(order_id)
    return _order_response(order)


@order_router.put("/{order_id}/confirm", response_model=StatusResponse)
async def confirm_order(order_id: str) -> StatusResponse:
    current_domain.process(ConfirmOrder(order_id=order_id), asynchronous=False)
    return StatusResponse()


@order_router.put("/{order_id}/processing", response_model=StatusResponse)
async def start_processing(order_id: str) -> StatusResponse:
    current_domain.process(StartProcessing(order_id=order_id), asynchronous=False)
    return StatusResponse()


@order_router.put("/{order_id}/weights", response_model=WeightsResponse)
async def confirm_weights(order_id: str, body: ConfirmWeightsRequest) -> WeightsResponse:
    """Record the weighed grams of variable-weight lines."""
    final_total = current_domain.process(
        ConfirmWeights(order_id=order_id, weights=json.dumps(body.weights)),
        asynchronous=False,
    )
    return WeightsResponse(final_total=final_total)


@order_router.put("/{order_id}/ready", response_model=StatusResponse)
def mark_ready(order_id: str) -> StatusResponse:
    current_domain.process(MarkReady(order_id=order_id), asynchronous=False)
    return StatusResponse()


@order_router.put("/{order_id}/complete", response_model=StatusResponse)
async def complete_order(order_id: str) -> StatusResponse:
    current_domain.process(CompleteOrder(order_id=order_id), asynchronous=False)
    return StatusResponse()


@order_router.post("/{order_id}/cancel", response_model=CancellationResponse)
def cancel_order(order_id: str, body: CancelOrderRequest | None = None) -> CancellationResponse:
    reason = body.reason if body else CancelOrderRequest().reason
    result = current_domain.process(CancelOrder(order_id=order_id, reason=reason), asynchronous=False)
    return _cancellation_response(result)


@order_router.post("/{order_id}/cancel/retry", response_model=CancellationResponse)
def retry_cancellation(order_id: str) -> CancellationResponse:
    """Resume the compensations of a parked cancellation."""
    result = current_domain.process(RetryCancellation(order_id=order_id), asynchronous=False)
    return _cancellation_response(result)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
@order_router.post("/{order_id}/payment/authorize", response_model=PaymentOutcomeResponse)
def authorize_payment(order_id: str, body: AuthorizePaymentRequest | None = None) -> PaymentOutcomeResponse:
    amount = body.amount if body else None
    outcome = current_domain.process(AuthorizePayment(order_id=order_id, amount=amount), asynchronous=False)
    return _outcome_response(outcome)


@order_router.post("/{order_id}/payment/capture", response_model=PaymentOutcomeResponse)
def capture_payment(order_id: str, body: CapturePaymentRequest | None = None) -> PaymentOutcomeResponse:
    amount = body.amount if body else None
    outcome = current_domain.process(CapturePayment(order_id=order_id, amount=amount), asynchronous=False)
    return _outcome_response(outcome)


@order_router.post("/{order_id}/payment/cash", response_model=PaymentOutcomeResponse)
async def confirm_cash_payment(order_id: str) -> PaymentOutcomeResponse:
    outcome = current_domain.process(ConfirmCashPayment(order_id=order_id), asynchronous=False)
    return _outcome_response(outcome)


@order_router.post("/{order_id}/payment/void", response_model=PaymentOutcomeResponse)
def void_payment(order_id: str) -> PaymentOutcomeResponse:
    outcome = current_domain.process(VoidPayment(order_id=order_id), asynchronous=False)
    return _outcome_response(outcome)


@order_router.post("/{order_id}/payment/refund", response_model=PaymentOutcomeResponse)
def refund_payment(order_id: str, body: RefundPaymentRequest | None = None) -> PaymentOutcomeResponse:
    body = body or RefundPaymentRequest()
    outcome = current_domain.process(
        RefundPayment(order_id=order_id, amount=body.amount, reason=body.reason),
        asynchronous=False,
    )
    return _outcome_response(outcome)


@order_router.post("/{order_id}/payment/reconcile", response_model=PaymentOutcomeResponse)
def reconcile_payment(order_id: str) -> PaymentOutcomeResponse:
    """Re-read the transaction from the gateway, e.g. after a capture timeout."""
    outcome = current_domain.process(ReconcilePayment(order_id=order_id), asynchronous=False)
    return _outcome_response(outcome)


@order_router.get("/{order_id}/payments", response_model=PaymentLogListResponse)
async def list_payment_logs(order_id: str) -> PaymentLogListResponse:
    current_domain.repository_for(Order).get(order_id)
    return PaymentLogListResponse(
        logs=[
            PaymentLogResponse(
                log_id=str(log.id),
                action=log.action,
                status=log.status,
                amount=log.amount or 0.0,
                currency=log.currency,
                transaction_id=log.transaction_id,
                gateway_status=log.gateway_status,
                error_message=log.error_message,
                created_at=log.created_at,
            )
            for log in PaymentLedger().for_order(order_id)
        ]
    )


@order_router.get("/{order_id}/delivery", response_model=TrackingResponse)
def track_delivery(order_id: str) -> TrackingResponse:
    order = current_domain.repository_for(Order).get(order_id)
    if not order.delivery_id:
        raise ValidationError({"delivery_id": ["Order has no courier booking"]})

    status = get_dispatcher().track(order.delivery_id)
    if not status.success:
        raise DispatchUnavailable(status.error or "Tracking unavailable", retryable=status.retryable)
    return TrackingResponse(
        delivery_id=order.delivery_id,
        status=status.status,
        driver=status.driver,
        current_location=status.current_location,
        estimated_arrival=status.estimated_arrival,
        tracking_url=status.tracking_url or order.tracking_url,
    )


# ---------------------------------------------------------------------------
# Delivery Router
# ---------------------------------------------------------------------------
delivery_router = APIRouter(prefix="/delivery", tags=["delivery"])


@delivery_router.post("/quote", response_model=FeeQuoteResponse)
def quote_delivery_fee(body: FeeQuoteRequest) -> FeeQuoteResponse:
    fee = get_fee_calculator().quote(body.address, body.order_amount)
    return FeeQuoteResponse(amount=fee.amount, zone=fee.zone, source=fee.source)


@delivery_router.get("/slots", response_model=SlotsResponse)
async def delivery_slots(on: date | None = None) -> SlotsResponse:
    now = datetime.now(UTC)
    on = on or now.date()
    return SlotsResponse(on=on, slots=available_slots(get_settings().pickup_slot_list, on, now))


@delivery_router.post("/maintenance/release-expired", response_model=SweepResponse)
async def release_expired_reservations() -> SweepResponse:
    """Periodic job: give back stock held by abandoned checkouts."""
    return SweepResponse(released=get_stock_manager().sweep_expired())


# ---------------------------------------------------------------------------
# Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _verified_body(body: bytes, signature: str | None, secret: str, source: str) -> bytes:
    if not verify_signature(body, signature, secret):
        logger.warning("Webhook signature mismatch", source=source, signature_present=bool(signature))
        raise InvalidSignature(f"Invalid {source} webhook signature")
    return body


@webhook_router.post("/payment", response_model=WebhookResponse)
async def payment_webhook(
    request: Request,
    x_payment_signature: str | None = Header(default=None),
) -> WebhookResponse:
    body = _verified_body(
        await request.body(), x_payment_signature, get_settings().payment_webhook_secret, "payment"
    )
    try:
        payload = PaymentCallbackPayload.model_validate_json(body)
    except PayloadError as exc:
        raise ValidationError({"body": [str(exc)]}) from None

    # Applying a callback may void a superseded hold at the gateway.
    outcome = await run_in_threadpool(
        current_domain.process,
        ProcessPaymentCallback(
            transaction_id=payload.transaction_id,
            status=payload.status,
            amount=payload.amount,
            raw_payload=body.decode("utf-8"),
        ),
        asynchronous=False,
    )
    return WebhookResponse(applied=outcome.success and not outcome.duplicate)


@webhook_router.post("/delivery", response_model=WebhookResponse)
async def delivery_webhook(
    request: Request,
    x_delivery_signature: str | None = Header(default=None),
) -> WebhookResponse:
    body = _verified_body(
        await request.body(), x_delivery_signature, get_settings().delivery_webhook_secret, "delivery"
    )
    try:
        payload = DeliveryWebhookPayload.model_validate_json(body)
    except PayloadError as exc:
        raise ValidationError({"body": [str(exc)]}) from None

    applied = current_domain.process(
        RecordDeliveryStatus(
            delivery_id=payload.delivery_id,
            status=payload.status,
            estimated_arrival=payload.estimated_arrival,
        ),
        asynchronous=False,
    )
    return WebhookResponse(applied=bool(applied))
