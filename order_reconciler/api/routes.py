"""
API routes for order creation, confirmation and monitoring.

``OrderError`` subclasses raised here propagate to the application's
exception handler, which maps them to status codes.
"""
import time
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from order_reconciler.core.auth import Principal
from order_reconciler.core.lifecycle import OrderLifecycleManager
from order_reconciler.integrations.gateway import Provider
from order_reconciler.integrations.webhook_handler import WebhookIngestor
from order_reconciler.monitoring.health import HealthCheck

from .dependencies import get_health, get_ingestor, get_lifecycle, get_order_request, get_principal
from .schemas import (
    CaptureResponse,
    CreateOrderRequest,
    HealthCheckResponse,
    OrderListResponse,
    PayPalPaymentResponse,
    StripePaymentResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

order_router = APIRouter(prefix="/api", tags=["orders"])
webhook_router = APIRouter(prefix="/api", tags=["webhooks"])
monitoring_router = APIRouter(tags=["monitoring"])


async def _create(
    lifecycle: OrderLifecycleManager,
    principal: Principal,
    provider: Provider,
    body: CreateOrderRequest,
) -> Dict[str, Any]:
    start_time = time.time()
    logger.info("api_create_order_request", provider=provider.value)

    created = await lifecycle.create_order(principal, provider, body.total, body.products)

    logger.info(
        "api_create_order_success",
        provider=provider.value,
        order_id=created.order_id,
        duration_seconds=time.time() - start_time,
    )
    return {**created.provider_handoff, "orderId": created.order_id}


@order_router.post(
    "/create-stripe-payment",
    response_model=StripePaymentResponse,
    summary="Create a Stripe-backed order",
    description="Create a PaymentIntent and record the order as Created",
)
async def create_stripe_payment(
    principal: Principal = Depends(get_principal),
    body: CreateOrderRequest = Depends(get_order_request),
    lifecycle: OrderLifecycleManager = Depends(get_lifecycle),
) -> Dict[str, Any]:
    return await _create(lifecycle, principal, Provider.STRIPE, body)


@order_router.post(
    "/create-paypal-payment",
    response_model=PayPalPaymentResponse,
    summary="Create a PayPal-backed order",
    description="Create a PayPal order awaiting buyer approval and record it as Created",
)
async def create_paypal_payment(
    principal: Principal = Depends(get_principal),
    body: CreateOrderRequest = Depends(get_order_request),
    lifecycle: OrderLifecycleManager = Depends(get_lifecycle),
) -> Dict[str, Any]:
    return await _create(lifecycle, principal, Provider.PAYPAL, body)


@order_router.post(
    "/capture-paypal-payment/{paypal_order_id}",
    response_model=CaptureResponse,
    summary="Capture an approved PayPal order",
    description="Capture the payment and mark the matching order as Paid",
)
async def capture_paypal_payment(
    paypal_order_id: str,
    principal: Principal = Depends(get_principal),
    lifecycle: OrderLifecycleManager = Depends(get_lifecycle),
) -> Dict[str, Any]:
    logger.info("api_capture_order_request", paypal_order_id=paypal_order_id)

    captured = await lifecycle.capture_order(principal, paypal_order_id, Provider.PAYPAL)

    logger.info(
        "api_capture_order_success",
        order_id=captured.order_id,
        capture_id=captured.capture_reference,
    )
    return {"captureID": captured.capture_reference, "orderId": captured.order_id}


@order_router.get(
    "/orders",
    response_model=OrderListResponse,
    summary="List orders",
    description="List the caller's orders, most recent first",
)
async def list_orders(
    limit: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(get_principal),
    lifecycle: OrderLifecycleManager = Depends(get_lifecycle),
) -> Dict[str, Any]:
    orders = await lifecycle.list_orders(principal, limit=limit)
    return {"orders": [order.to_dict() for order in orders], "count": len(orders)}


@webhook_router.post(
    "/stripe-payment-success-webhook",
    response_model=WebhookResponse,
    summary="Stripe webhook endpoint",
    description="Verify and handle Stripe webhook events",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    ingestor: WebhookIngestor = Depends(get_ingestor),
) -> Dict[str, Any]:
    """
    Handle Stripe webhook events.

    The signature is checked against the raw body, so the body is read as
    bytes and never parsed before verification.
    """
    body = await request.body()
    ack = await ingestor.ingest(body, stripe_signature)
    return ack.to_dict()


@monitoring_router.get(
    "/api/health",
    response_class=PlainTextResponse,
    summary="Liveness probe",
)
async def liveness() -> str:
    return "OK"


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Check that the order store is reachable",
)
async def readiness(health: HealthCheck = Depends(get_health)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await health.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
