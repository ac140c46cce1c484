"""
Pytest configuration and fixtures.
"""
import hashlib
import hmac
import json
import time
from typing import Any, AsyncGenerator, Callable, Dict, Optional
from unittest.mock import AsyncMock

import jwt
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine

from order_reconciler.config import Settings
from order_reconciler.core.auth import Principal, Role
from order_reconciler.core.lifecycle import OrderLifecycleManager
from order_reconciler.database.connection import close_db, create_engine, create_session_factory, init_db
from order_reconciler.database.store import OrderStore
from order_reconciler.integrations.gateway import CaptureResult, PaymentHandoff, Provider
from order_reconciler.integrations.paypal_client import PayPalGateway
from order_reconciler.integrations.stripe_client import StripeGateway
from order_reconciler.integrations.webhook_handler import WebhookIngestor

SESSION_SECRET = "test-session-secret"
WEBHOOK_SECRET = "whsec_test_fake_secret"


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings backed by a per-test SQLite file."""
    return Settings(
        session_secret=SESSION_SECRET,
        stripe_secret_key="sk_test_fake_key_for_testing",
        stripe_webhook_secret=WEBHOOK_SECRET,
        paypal_client_id="paypal-client-id",
        paypal_client_secret="paypal-client-secret",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        app_name="order-reconciler-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
    )


@pytest_asyncio.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, Any]:
    """Create the test database schema."""
    engine = create_engine(test_settings)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def store(engine: AsyncEngine) -> OrderStore:
    return OrderStore(create_session_factory(engine))


@pytest.fixture
def user() -> Principal:
    return Principal(role=Role.USER, subject_id="user-123")


@pytest.fixture
def vendor() -> Principal:
    return Principal(role=Role.VENDOR, subject_id="vendor-456")


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Build a signed bearer token from claims."""

    def _make(secret: str = SESSION_SECRET, expires_in: Optional[int] = 3600, **claims: Any) -> str:
        if expires_in is not None:
            claims["exp"] = int(time.time()) + expires_in
        return jwt.encode(claims, secret, algorithm="HS256")

    return _make


@pytest.fixture
def stripe_gateway() -> AsyncMock:
    """Stripe gateway mock handing out a fixed PaymentIntent."""
    gateway = AsyncMock(spec=StripeGateway)
    gateway.provider = Provider.STRIPE
    gateway.create_payment.return_value = PaymentHandoff(
        remote_reference="pi_test_123",
        client_handoff={"clientSecret": "pi_test_123_secret_abc"},
    )
    return gateway


@pytest.fixture
def paypal_gateway() -> AsyncMock:
    """PayPal gateway mock handing out a fixed PayPal order."""
    gateway = AsyncMock(spec=PayPalGateway)
    gateway.provider = Provider.PAYPAL
    gateway.create_payment.return_value = PaymentHandoff(
        remote_reference="PAYPAL-ORDER-1",
        client_handoff={
            "id": "PAYPAL-ORDER-1",
            "links": [{"rel": "approve", "href": "https://paypal.test/approve/1"}],
            "approvalUrl": "https://paypal.test/approve/1",
        },
    )
    gateway.capture_payment.return_value = CaptureResult(capture_reference="CAPTURE-1")
    return gateway


@pytest.fixture
def lifecycle(
    store: OrderStore, stripe_gateway: AsyncMock, paypal_gateway: AsyncMock
) -> OrderLifecycleManager:
    return OrderLifecycleManager(
        store,
        {Provider.STRIPE: stripe_gateway, Provider.PAYPAL: paypal_gateway},
        currency="USD",
    )


@pytest.fixture
def ingestor(lifecycle: OrderLifecycleManager) -> WebhookIngestor:
    return WebhookIngestor(lifecycle, WEBHOOK_SECRET)


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a ``Stripe-Signature`` header for ``payload``."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(
    event_type: str,
    metadata: Optional[Dict[str, Any]] = None,
    event_id: str = "evt_test_1",
) -> bytes:
    """Serialize a minimal Stripe event around a PaymentIntent."""
    return json.dumps(
        {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {
                "object": {
                    "id": "pi_test_123",
                    "object": "payment_intent",
                    "status": "succeeded",
                    "metadata": metadata or {},
                }
            },
        }
    ).encode("utf-8")


@pytest.fixture
def sample_order_data() -> Dict[str, Any]:
    """Sample create-order request body."""
    return {
        "total": 42.5,
        "products": [{"productId": "sku-1", "quantity": 2}],
    }


@pytest.fixture
def signed_event() -> Callable[..., tuple]:
    """Build a signed Stripe delivery as ``(payload, signature_header)``."""

    def _build(
        event_type: str = "payment_intent.succeeded",
        metadata: Optional[Dict[str, Any]] = None,
        event_id: str = "evt_test_1",
        secret: str = WEBHOOK_SECRET,
        timestamp: Optional[int] = None,
    ) -> tuple:
        payload = stripe_event(event_type, metadata, event_id)
        return payload, sign_payload(payload, secret, timestamp)

    return _build
