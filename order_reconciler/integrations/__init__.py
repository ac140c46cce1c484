"""Payment provider integrations."""
from .gateway import CaptureResult, CapturingGateway, CorrelationMetadata, PaymentHandoff, Provider, ProviderGateway
from .paypal_client import PayPalGateway
from .stripe_client import StripeGateway
from .webhook_handler import WebhookAck, WebhookIngestor

__all__ = [
    "CaptureResult",
    "CapturingGateway",
    "CorrelationMetadata",
    "PayPalGateway",
    "PaymentHandoff",
    "Provider",
    "ProviderGateway",
    "StripeGateway",
    "WebhookAck",
    "WebhookIngestor",
]
