"""
Stripe gateway for push-confirmed payments.

Creates a PaymentIntent carrying the order's correlation metadata and hands
its client secret to the front-end. Payment success is learned later from the
``payment_intent.succeeded`` webhook.
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict

import stripe
import structlog

from order_reconciler.core.errors import ProviderError

from .gateway import CorrelationMetadata, PaymentHandoff, Provider, ProviderGateway

logger = structlog.get_logger(__name__)


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal amount to integer cents, rounding half up."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeGateway(ProviderGateway):
    """
    Wrapper for the Stripe PaymentIntent API.

    Calls go through a dedicated async ``StripeClient``; the ``stripe``
    module-level key is never set. Its HTTP client uses the same timeout as
    the gateway, so a call abandoned on timeout is also cut off on the wire.
    """

    provider = Provider.STRIPE

    def __init__(self, api_key: str, api_version: str, timeout_seconds: float):
        """
        Initialize Stripe gateway.

        Args:
            api_key: Stripe secret key
            api_version: Pinned Stripe API version
            timeout_seconds: Upper bound for every Stripe call
        """
        super().__init__(timeout_seconds)
        self.api_version = api_version
        self.http_client = stripe.HTTPXClient(timeout=timeout_seconds)
        self.client = stripe.StripeClient(
            api_key,
            stripe_version=api_version,
            http_client=self.http_client,
            max_network_retries=0,
        )

        logger.info(
            "stripe_gateway_initialized",
            api_version=api_version,
            test_mode=api_key.startswith("sk_test_"),
        )

    def _handle_stripe_error(self, error: stripe.StripeError) -> ProviderError:
        """Translate a Stripe SDK error into a ``ProviderError``."""
        diagnostic: Dict[str, Any] = {
            "type": type(error).__name__,
            "code": getattr(error, "code", None),
            "http_status": getattr(error, "http_status", None),
            "message": getattr(error, "user_message", None) or str(error),
        }
        logger.error("stripe_api_error", **diagnostic)
        return ProviderError(
            self.provider.value,
            f"Error creating Stripe payment: {diagnostic['message']}",
            diagnostic=diagnostic,
            original_error=error,
        )

    async def create_payment(
        self, amount: Decimal, currency: str, correlation: CorrelationMetadata
    ) -> PaymentHandoff:
        """
        Create a Stripe PaymentIntent.

        The local order id doubles as the idempotency key, so a client retry
        with the same order never produces a second intent.

        Returns:
            PaymentHandoff: Intent id and ``clientSecret`` for the front-end

        Raises:
            ProviderError: If intent creation fails or times out
        """
        amount_cents = to_minor_units(amount)
        logger.info(
            "creating_payment_intent",
            order_id=correlation.order_id,
            amount_cents=amount_cents,
            currency=currency,
        )

        async def _create() -> Any:
            try:
                return await self.client.v1.payment_intents.create_async(
                    params={
                        "amount": amount_cents,
                        "currency": currency.lower(),
                        "metadata": correlation.as_metadata(),
                        "automatic_payment_methods": {"enabled": True},
                    },
                    options={"idempotency_key": correlation.order_id},
                )
            except stripe.StripeError as e:
                raise self._handle_stripe_error(e) from e

        payment_intent = await self._call("create_payment", _create)

        logger.info(
            "payment_intent_created",
            order_id=correlation.order_id,
            payment_intent_id=payment_intent.id,
            status=payment_intent.status,
        )
        return PaymentHandoff(
            remote_reference=payment_intent.id,
            client_handoff={"clientSecret": payment_intent.client_secret},
        )

    async def aclose(self) -> None:
        await self.http_client.close_async()
