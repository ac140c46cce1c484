"""
Pydantic schemas for API request/response models.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CreateOrderRequest(BaseModel):
    """
    Request schema for creating an order.

    Both fields are loosely typed; the lifecycle manager validates them and
    answers with a 400 rather than a schema error.
    """

    total: Optional[Any] = Field(default=None, description="Order total in major units")
    products: Optional[Any] = Field(default=None, description="Opaque line items")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "total": 42.5,
                    "products": [{"productId": "sku-1", "quantity": 2}],
                }
            ]
        }
    }


class StripePaymentResponse(BaseModel):
    """Response schema for a Stripe-backed order."""

    clientSecret: str = Field(..., description="PaymentIntent client secret")
    orderId: str = Field(..., description="Local order id")


class PayPalPaymentResponse(BaseModel):
    """Response schema for a PayPal-backed order."""

    id: str = Field(..., description="PayPal order id")
    links: List[Dict[str, Any]] = Field(default_factory=list, description="PayPal HATEOAS links")
    orderId: str = Field(..., description="Local order id")
    approvalUrl: str = Field(..., description="URL the buyer approves the payment at")


class CaptureResponse(BaseModel):
    """Response schema for a PayPal capture."""

    captureID: str = Field(..., description="PayPal capture id")
    orderId: str = Field(..., description="Local order marked as paid")


class WebhookResponse(BaseModel):
    """Response schema for webhook processing."""

    received: bool = Field(default=True, description="Event was verified and acknowledged")
    eventId: Optional[str] = Field(default=None, description="Stripe event ID")
    eventType: Optional[str] = Field(default=None, description="Stripe event type")
    handled: bool = Field(default=False, description="A handler exists for the event type")
    outcome: Optional[str] = Field(default=None, description="Processing outcome")


class OrderResponse(BaseModel):
    orderId: str
    provider: str
    providerReference: str
    totalAmount: str
    currency: str
    products: Any = None
    status: str
    captureReference: Optional[str] = None
    date: str
    paidAt: Optional[str] = None


class OrderListResponse(BaseModel):
    """Response schema for the principal's orders."""

    orders: List[OrderResponse] = Field(default_factory=list, description="Most recent first")
    count: int = Field(..., description="Number of orders returned")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
