"""
Order lifecycle manager.

Orchestrates the order state machine ``Created -> Paid``:
1. Create: validate input, generate the order id, create the remote payment,
   then persist the order as ``Created``
2. Confirm via webhook: conditional update to ``Paid``, never fatal to the
   webhook channel
3. Confirm via capture: capture remotely, locate the order, update to ``Paid``

No in-process locks are taken; concurrent transitions on one order are
serialized by the store's conditional update.
"""
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

import structlog

from order_reconciler.core.auth import Principal, Role
from order_reconciler.core.errors import (
    OrderNotFoundError,
    OrderValidationError,
    ProviderError,
    StoreError,
)
from order_reconciler.database.models import OrderStatus
from order_reconciler.database.store import NewOrder, OrderRecord, OrderStore
from order_reconciler.integrations.gateway import (
    CapturingGateway,
    CorrelationMetadata,
    Provider,
    ProviderGateway,
)
from order_reconciler.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

REQUIRED_FIELDS_MESSAGE = "Total amount and products are required"


class TransitionOutcome(str, Enum):
    """Result of a conditional status transition."""

    MATCHED = "matched"
    NOT_MATCHED = "not_matched"
    STORE_ERROR = "store_error"


@dataclass(frozen=True)
class CreatedOrder:
    """A persisted order plus the provider handoff for the client."""

    order: OrderRecord
    provider_handoff: Dict[str, Any]

    @property
    def order_id(self) -> str:
        return self.order.order_id


@dataclass(frozen=True)
class CapturedOrder:
    capture_reference: str
    order_id: str


def parse_total_amount(value: Any) -> Decimal:
    """
    Validate a client-supplied total and round it to cents.

    Raises:
        OrderValidationError: If the value is missing, not numeric, or not positive
    """
    if value is None or value == "":
        raise OrderValidationError(REQUIRED_FIELDS_MESSAGE)
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal, str)):
        raise OrderValidationError("Total amount must be a number")

    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            raise OrderValidationError("Total amount must be a finite number")
        amount = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise OrderValidationError("Total amount must be a number")

    if amount <= 0:
        raise OrderValidationError("Total amount must be positive")
    return amount


def parse_products(value: Any) -> List[Any]:
    """Line items are opaque; only their presence and list shape are checked."""
    if value is None:
        raise OrderValidationError(REQUIRED_FIELDS_MESSAGE)
    if not isinstance(value, list):
        raise OrderValidationError("Products must be a list")
    return list(value)


class OrderLifecycleManager:
    """
    Owns every order status transition.

    Provider gateways are built once at process start and injected here.
    """

    def __init__(
        self,
        store: OrderStore,
        gateways: Mapping[Provider, ProviderGateway],
        currency: str = "USD",
    ):
        """
        Initialize lifecycle manager.

        Args:
            store: Order store adapter
            gateways: Configured gateway per provider
            currency: Currency fixed on every order
        """
        self.store = store
        self.gateways = dict(gateways)
        self.currency = currency

        logger.info(
            "order_lifecycle_manager_initialized",
            providers=sorted(provider.value for provider in self.gateways),
        )

    def _gateway(self, provider: Union[Provider, str]) -> ProviderGateway:
        try:
            provider = Provider(provider)
        except ValueError:
            raise OrderValidationError(f"Unknown payment provider: {provider}")

        gateway = self.gateways.get(provider)
        if gateway is None:
            raise ProviderError(provider.value, f"Payment provider {provider.value} is not configured")
        return gateway

    async def create_order(
        self,
        principal: Principal,
        provider: Union[Provider, str],
        total_amount: Any,
        products: Any,
    ) -> CreatedOrder:
        """
        Create an order against a payment provider.

        The order id is generated before the remote call so it travels to the
        provider as correlation metadata. The order is persisted only after
        the provider accepted the payment.

        Args:
            principal: Authenticated owner of the order
            provider: Provider to create the payment with
            total_amount: Client-supplied total
            products: Client-supplied line items

        Returns:
            CreatedOrder: Stored order and provider handoff

        Raises:
            OrderValidationError: If input validation fails (no remote call made)
            ProviderError: If the provider call fails (nothing persisted)
            StoreError: If the order cannot be persisted
        """
        if total_amount is None or products is None:
            raise OrderValidationError(REQUIRED_FIELDS_MESSAGE)
        amount = parse_total_amount(total_amount)
        items = parse_products(products)
        gateway = self._gateway(provider)

        order_id = str(uuid.uuid4())
        log = logger.bind(order_id=order_id, provider=gateway.provider.value)
        log.info("order_creation_started", amount=str(amount), currency=self.currency)

        handoff = await gateway.create_payment(
            amount, self.currency, CorrelationMetadata(order_id=order_id, principal=principal)
        )

        try:
            record = await self.store.append(
                principal,
                NewOrder(
                    order_id=order_id,
                    provider=gateway.provider.value,
                    provider_reference=handoff.remote_reference,
                    total_amount=amount,
                    currency=self.currency,
                    products=items,
                ),
            )
        except StoreError:
            # The remote payment exists but no local order will ever match it.
            log.error(
                "order_persist_failed_after_provider_success",
                provider_reference=handoff.remote_reference,
            )
            raise

        metrics.record_order_created(gateway.provider.value)
        log.info("order_created", provider_reference=handoff.remote_reference)
        return CreatedOrder(order=record, provider_handoff=handoff.client_handoff)

    async def confirm_from_webhook(
        self, owner_role: Role, owner_id: str, order_id: str
    ) -> TransitionOutcome:
        """
        Mark an order ``Paid`` after a verified payment-succeeded event.

        A missing order is a no-op and store failures are reported, not
        raised: the event must still be acknowledged to the provider.
        Re-delivery of the same event leaves the order unchanged.
        """
        log = logger.bind(order_id=order_id, owner_role=owner_role.value, owner_id=owner_id)
        try:
            matched = await self.store.conditional_update_status(
                owner_role, owner_id, order_id, OrderStatus.PAID
            )
        except StoreError as e:
            log.error("webhook_confirmation_store_error", error=str(e))
            metrics.record_transition("webhook", TransitionOutcome.STORE_ERROR.value)
            return TransitionOutcome.STORE_ERROR

        outcome = TransitionOutcome.MATCHED if matched else TransitionOutcome.NOT_MATCHED
        metrics.record_transition("webhook", outcome.value)
        if matched:
            log.info("order_paid_via_webhook")
        else:
            log.warning("webhook_confirmation_no_matching_order")
        return outcome

    async def _locate_captured_order(
        self, principal: Principal, correlated_order_id: Optional[str]
    ) -> OrderRecord:
        if correlated_order_id:
            order = await self.store.get(principal, correlated_order_id)
            if order is None:
                logger.error(
                    "captured_order_not_owned_by_principal",
                    order_id=correlated_order_id,
                )
                raise OrderNotFoundError(f"Order {correlated_order_id} not found")
            return order

        # Provider did not echo the order id; fall back to the most recent
        # order, which is ambiguous if the principal has several open orders.
        order = await self.store.find_most_recent(principal)
        if order is None:
            raise OrderNotFoundError("No order found to mark as paid")
        logger.warning("capture_correlated_by_recency", order_id=order.order_id)
        return order

    async def capture_order(
        self,
        principal: Principal,
        remote_order_reference: str,
        provider: Union[Provider, str] = Provider.PAYPAL,
    ) -> CapturedOrder:
        """
        Capture an approved payment and mark the matching order ``Paid``.

        Args:
            principal: Authenticated owner of the order
            remote_order_reference: Provider order id approved by the buyer
            provider: Pull-confirmation provider holding the payment

        Returns:
            CapturedOrder: Capture reference and the local order id

        Raises:
            ProviderError: If the capture fails (no local state changed)
            OrderNotFoundError: If no order of the principal matches
            StoreError: If the status update fails
        """
        if not remote_order_reference:
            raise OrderValidationError("Provider order reference is required")

        gateway = self._gateway(provider)
        if not isinstance(gateway, CapturingGateway):
            raise OrderValidationError(
                f"Payment provider {gateway.provider.value} does not support capture"
            )

        result = await gateway.capture_payment(remote_order_reference)

        try:
            order = await self._locate_captured_order(principal, result.order_id)
        except OrderNotFoundError:
            metrics.record_transition("capture", TransitionOutcome.NOT_MATCHED.value)
            logger.error(
                "captured_payment_without_local_order",
                remote_order_reference=remote_order_reference,
                capture_reference=result.capture_reference,
            )
            raise

        matched = await self.store.conditional_update_status(
            principal.role,
            principal.subject_id,
            order.order_id,
            OrderStatus.PAID,
            capture_reference=result.capture_reference,
        )
        if not matched:
            metrics.record_transition("capture", TransitionOutcome.NOT_MATCHED.value)
            raise OrderNotFoundError(f"Order {order.order_id} not found")

        metrics.record_transition("capture", TransitionOutcome.MATCHED.value)
        logger.info(
            "order_paid_via_capture",
            order_id=order.order_id,
            capture_reference=result.capture_reference,
        )
        return CapturedOrder(capture_reference=result.capture_reference, order_id=order.order_id)

    async def list_orders(self, principal: Principal, limit: int = 50) -> List[OrderRecord]:
        """Principal's orders, most recent first."""
        return await self.store.list_for(principal, limit=limit)
