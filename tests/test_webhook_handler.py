"""
Tests for Stripe webhook ingestion.

Deliveries are signed with the real ``t=...,v1=...`` HMAC-SHA256 scheme so
``stripe.WebhookSignature.verify_header`` runs unmodified.
"""
import time
from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest

from order_reconciler.core.auth import Principal, Role
from order_reconciler.core.errors import SignatureInvalidError
from order_reconciler.core.lifecycle import OrderLifecycleManager, TransitionOutcome
from order_reconciler.database.models import OrderStatus
from order_reconciler.database.store import OrderStore
from order_reconciler.integrations.gateway import Provider
from order_reconciler.integrations.webhook_handler import WebhookIngestor

from .conftest import WEBHOOK_SECRET, sign_payload

PRODUCTS = [{"productId": "sku-1"}]


def order_metadata(order_id: str, principal: Principal) -> dict:
    return {
        "orderId": order_id,
        "subjectId": principal.subject_id,
        "role": principal.role.value,
        principal.subject_claim: principal.subject_id,
    }


class TestSignatureVerification:
    """Test suite for webhook signature checks."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_signature_rejected(self, signed_event: Callable[..., tuple]) -> None:
        lifecycle = AsyncMock(spec=OrderLifecycleManager)
        ingestor = WebhookIngestor(lifecycle, WEBHOOK_SECRET)
        payload, _ = signed_event()

        with pytest.raises(SignatureInvalidError, match="Missing"):
            await ingestor.ingest(payload, None)

        lifecycle.confirm_from_webhook.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_wrong_secret_rejected(self, signed_event: Callable[..., tuple]) -> None:
        lifecycle = AsyncMock(spec=OrderLifecycleManager)
        ingestor = WebhookIngestor(lifecycle, WEBHOOK_SECRET)
        payload, header = signed_event(
            metadata={"orderId": "order-1", "userId": "user-123"}, secret="whsec_other"
        )

        with pytest.raises(SignatureInvalidError):
            await ingestor.ingest(payload, header)

        lifecycle.confirm_from_webhook.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_tampered_payload_rejected(self, signed_event: Callable[..., tuple]) -> None:
        """Test a single changed byte after signing fails verification."""
        lifecycle = AsyncMock(spec=OrderLifecycleManager)
        ingestor = WebhookIngestor(lifecycle, WEBHOOK_SECRET)
        payload, header = signed_event(metadata={"orderId": "order-1", "userId": "user-123"})
        tampered = payload.replace(b"order-1", b"order-2")

        with pytest.raises(SignatureInvalidError):
            await ingestor.ingest(tampered, header)

        lifecycle.confirm_from_webhook.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stale_timestamp_rejected(self, signed_event: Callable[..., tuple]) -> None:
        ingestor = WebhookIngestor(AsyncMock(spec=OrderLifecycleManager), WEBHOOK_SECRET, tolerance=300)
        payload, header = signed_event(timestamp=int(time.time()) - 3600)

        with pytest.raises(SignatureInvalidError):
            await ingestor.ingest(payload, header)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_malformed_header_rejected(self, signed_event: Callable[..., tuple]) -> None:
        ingestor = WebhookIngestor(AsyncMock(spec=OrderLifecycleManager), WEBHOOK_SECRET)
        payload, _ = signed_event()

        with pytest.raises(SignatureInvalidError):
            await ingestor.ingest(payload, "not-a-signature")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_event_json_rejected(self) -> None:
        ingestor = WebhookIngestor(AsyncMock(spec=OrderLifecycleManager), WEBHOOK_SECRET)
        payload = b"[1, 2, 3]"

        with pytest.raises(SignatureInvalidError, match="invalid payload"):
            await ingestor.ingest(payload, sign_payload(payload))

    @pytest.mark.unit
    def test_verified_event_is_plain_json(self, signed_event: Callable[..., tuple]) -> None:
        """Test handlers see builtin dicts whatever object model the SDK uses."""
        ingestor = WebhookIngestor(AsyncMock(spec=OrderLifecycleManager), WEBHOOK_SECRET)
        payload, header = signed_event(metadata={"orderId": "order-1", "userId": "user-123"})

        event = ingestor.verify(payload, header)

        assert type(event) is dict
        intent = event["data"]["object"]
        assert type(intent) is dict
        assert intent.get("metadata") == {"orderId": "order-1", "userId": "user-123"}


class TestEventProcessing:
    """Test suite for verified event handling."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_payment_succeeded_marks_order_paid(
        self,
        ingestor: WebhookIngestor,
        lifecycle: OrderLifecycleManager,
        store: OrderStore,
        user: Principal,
        signed_event: Callable[..., tuple],
    ) -> None:
        created = await lifecycle.create_order(user, Provider.STRIPE, 10, PRODUCTS)
        payload, header = signed_event(metadata=order_metadata(created.order_id, user))

        ack = await ingestor.ingest(payload, header)

        assert ack.handled is True
        assert ack.outcome == TransitionOutcome.MATCHED.value
        assert ack.to_dict()["received"] is True
        assert (await store.get(user, created.order_id)).status is OrderStatus.PAID

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_vendor_order_confirmed(
        self,
        ingestor: WebhookIngestor,
        lifecycle: OrderLifecycleManager,
        store: OrderStore,
        vendor: Principal,
        signed_event: Callable[..., tuple],
    ) -> None:
        created = await lifecycle.create_order(vendor, Provider.STRIPE, 10, PRODUCTS)
        payload, header = signed_event(metadata=order_metadata(created.order_id, vendor))

        await ingestor.ingest(payload, header)

        assert (await store.get(vendor, created.order_id)).status is OrderStatus.PAID

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_legacy_user_metadata(
        self,
        ingestor: WebhookIngestor,
        lifecycle: OrderLifecycleManager,
        store: OrderStore,
        user: Principal,
        signed_event: Callable[..., tuple],
    ) -> None:
        """Test intents carrying only ``userId`` and ``orderId`` still confirm."""
        created = await lifecycle.create_order(user, Provider.STRIPE, 10, PRODUCTS)
        payload, header = signed_event(
            metadata={"orderId": created.order_id, "userId": user.subject_id}
        )

        await ingestor.ingest(payload, header)

        assert (await store.get(user, created.order_id)).status is OrderStatus.PAID

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_idempotent(
        self,
        ingestor: WebhookIngestor,
        lifecycle: OrderLifecycleManager,
        store: OrderStore,
        user: Principal,
        signed_event: Callable[..., tuple],
    ) -> None:
        created = await lifecycle.create_order(user, Provider.STRIPE, 10, PRODUCTS)
        payload, header = signed_event(metadata=order_metadata(created.order_id, user))

        await ingestor.ingest(payload, header)
        first = await store.get(user, created.order_id)
        ack = await ingestor.ingest(payload, header)
        second = await store.get(user, created.order_id)

        assert ack.handled is True
        assert second.status is OrderStatus.PAID
        assert second.paid_at == first.paid_at

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_order_acknowledged(
        self, ingestor: WebhookIngestor, user: Principal, signed_event: Callable[..., tuple]
    ) -> None:
        payload, header = signed_event(metadata=order_metadata("missing-order", user))

        ack = await ingestor.ingest(payload, header)

        assert ack.outcome == TransitionOutcome.NOT_MATCHED.value

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_metadata_acknowledged(
        self, signed_event: Callable[..., tuple]
    ) -> None:
        lifecycle = AsyncMock(spec=OrderLifecycleManager)
        ingestor = WebhookIngestor(lifecycle, WEBHOOK_SECRET)
        payload, header = signed_event(metadata={"userId": "user-123"})

        ack = await ingestor.ingest(payload, header)

        assert ack.outcome == "missing_metadata"
        lifecycle.confirm_from_webhook.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_role_acknowledged(self, signed_event: Callable[..., tuple]) -> None:
        lifecycle = AsyncMock(spec=OrderLifecycleManager)
        ingestor = WebhookIngestor(lifecycle, WEBHOOK_SECRET)
        payload, header = signed_event(
            metadata={"orderId": "order-1", "subjectId": "x", "role": "admin"}
        )

        ack = await ingestor.ingest(payload, header)

        assert ack.outcome == "invalid_metadata"
        lifecycle.confirm_from_webhook.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_store_error_still_acknowledged(
        self, signed_event: Callable[..., tuple]
    ) -> None:
        lifecycle = AsyncMock(spec=OrderLifecycleManager)
        lifecycle.confirm_from_webhook.return_value = TransitionOutcome.STORE_ERROR
        ingestor = WebhookIngestor(lifecycle, WEBHOOK_SECRET)
        payload, header = signed_event(metadata={"orderId": "order-1", "userId": "user-123"})

        ack = await ingestor.ingest(payload, header)

        assert ack.handled is True
        assert ack.outcome == TransitionOutcome.STORE_ERROR.value
        lifecycle.confirm_from_webhook.assert_awaited_once_with(Role.USER, "user-123", "order-1")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_handler_exception_still_acknowledged(
        self, signed_event: Callable[..., tuple]
    ) -> None:
        lifecycle = AsyncMock(spec=OrderLifecycleManager)
        lifecycle.confirm_from_webhook.side_effect = RuntimeError("boom")
        ingestor = WebhookIngestor(lifecycle, WEBHOOK_SECRET)
        payload, header = signed_event(metadata={"orderId": "order-1", "userId": "user-123"})

        ack = await ingestor.ingest(payload, header)

        assert ack.outcome == "error"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_payment_failed_is_logged_only(
        self, signed_event: Callable[..., tuple]
    ) -> None:
        lifecycle = AsyncMock(spec=OrderLifecycleManager)
        ingestor = WebhookIngestor(lifecycle, WEBHOOK_SECRET)
        payload, header = signed_event(
            event_type="payment_intent.payment_failed",
            metadata={"orderId": "order-1", "userId": "user-123"},
        )

        ack = await ingestor.ingest(payload, header)

        assert ack.outcome == "logged"
        lifecycle.confirm_from_webhook.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unhandled_event_type_acknowledged(
        self, signed_event: Callable[..., tuple]
    ) -> None:
        ingestor = WebhookIngestor(AsyncMock(spec=OrderLifecycleManager), WEBHOOK_SECRET)
        payload, header = signed_event(event_type="charge.refunded")

        ack = await ingestor.ingest(payload, header)

        assert ack.handled is False
        assert ack.outcome == "ignored"
        assert ack.event_type == "charge.refunded"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_register_custom_handler(self, signed_event: Callable[..., tuple]) -> None:
        ingestor = WebhookIngestor(AsyncMock(spec=OrderLifecycleManager), WEBHOOK_SECRET)
        handler = AsyncMock(return_value="custom")
        ingestor.register_handler("charge.refunded", handler)
        payload, header = signed_event(event_type="charge.refunded")

        ack = await ingestor.ingest(payload, header)

        assert ack.outcome == "custom"
        handler.assert_awaited_once()
        assert handler.await_args.args[0]["id"] == "pi_test_123"
