"""
Race condition tests for concurrent order transitions.

No locks are taken in-process; these tests check that the conditional update
alone keeps transitions consistent under concurrent load.
"""
import asyncio
from typing import List
from unittest.mock import AsyncMock

import pytest

from order_reconciler.core.auth import Principal, Role
from order_reconciler.core.lifecycle import OrderLifecycleManager, TransitionOutcome
from order_reconciler.database.models import OrderStatus
from order_reconciler.database.store import OrderStore
from order_reconciler.integrations.gateway import CaptureResult, Provider

PRODUCTS = [{"productId": "sku-1"}]


class TestRaceConditions:
    """Test suite for race condition scenarios."""

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_creates_get_distinct_order_ids(
        self, lifecycle: OrderLifecycleManager, store: OrderStore, user: Principal
    ) -> None:
        """
        Test concurrent order creation for one principal.

        Every request must produce its own order; none may be lost.
        """
        results = await asyncio.gather(
            *(lifecycle.create_order(user, Provider.STRIPE, 10 + i, PRODUCTS) for i in range(10))
        )

        order_ids = {created.order_id for created in results}
        assert len(order_ids) == 10

        stored = await store.list_for(user)
        assert {order.order_id for order in stored} == order_ids

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_webhook_deliveries(
        self, lifecycle: OrderLifecycleManager, store: OrderStore, user: Principal
    ) -> None:
        """Test duplicate deliveries racing each other leave one consistent Paid order."""
        created = await lifecycle.create_order(user, Provider.STRIPE, 10, PRODUCTS)

        outcomes: List[TransitionOutcome] = await asyncio.gather(
            *(
                lifecycle.confirm_from_webhook(Role.USER, user.subject_id, created.order_id)
                for _ in range(5)
            )
        )

        assert all(outcome is TransitionOutcome.MATCHED for outcome in outcomes)
        record = await store.get(user, created.order_id)
        assert record.status is OrderStatus.PAID
        assert record.paid_at is not None

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_webhook_and_capture_race(
        self,
        lifecycle: OrderLifecycleManager,
        store: OrderStore,
        paypal_gateway: AsyncMock,
        user: Principal,
    ) -> None:
        """Test a push and a pull confirmation of the same order both settle on Paid."""
        created = await lifecycle.create_order(user, Provider.PAYPAL, 10, PRODUCTS)
        paypal_gateway.capture_payment.return_value = CaptureResult(
            capture_reference="CAPTURE-1", order_id=created.order_id
        )

        outcome, captured = await asyncio.gather(
            lifecycle.confirm_from_webhook(Role.USER, user.subject_id, created.order_id),
            lifecycle.capture_order(user, "PAYPAL-ORDER-1"),
        )

        assert outcome is TransitionOutcome.MATCHED
        assert captured.order_id == created.order_id
        record = await store.get(user, created.order_id)
        assert record.status is OrderStatus.PAID
        assert record.capture_reference == "CAPTURE-1"

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_principals_do_not_interfere(
        self,
        lifecycle: OrderLifecycleManager,
        store: OrderStore,
        user: Principal,
        vendor: Principal,
    ) -> None:
        user_order, vendor_order = await asyncio.gather(
            lifecycle.create_order(user, Provider.STRIPE, 10, PRODUCTS),
            lifecycle.create_order(vendor, Provider.STRIPE, 20, PRODUCTS),
        )

        await asyncio.gather(
            lifecycle.confirm_from_webhook(Role.USER, user.subject_id, user_order.order_id),
            lifecycle.confirm_from_webhook(Role.USER, user.subject_id, vendor_order.order_id),
        )

        assert (await store.get(user, user_order.order_id)).status is OrderStatus.PAID
        assert (await store.get(vendor, vendor_order.order_id)).status is OrderStatus.CREATED
