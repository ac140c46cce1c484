"""
Stripe webhook ingestion with signature verification.

Implements:
- Signature verification over the exact raw request bytes, before parsing
- Event type routing to registered handlers
- Acknowledgement of every verified event, whatever its business outcome
"""
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Mapping, Optional

import stripe
import structlog

from order_reconciler.core.auth import SUBJECT_CLAIMS, Role
from order_reconciler.core.errors import SignatureInvalidError
from order_reconciler.monitoring.metrics import metrics

if TYPE_CHECKING:
    from order_reconciler.core.lifecycle import OrderLifecycleManager

logger = structlog.get_logger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"

EventHandler = Callable[[Mapping[str, Any]], Awaitable[str]]


@dataclass(frozen=True)
class WebhookAck:
    """Acknowledgement returned for every verified event."""

    event_id: str
    event_type: str
    handled: bool
    outcome: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "received": True,
            "eventId": self.event_id,
            "eventType": self.event_type,
            "handled": self.handled,
            "outcome": self.outcome,
        }


class WebhookIngestor:
    """
    Verifies Stripe webhook deliveries and feeds them into the order lifecycle.

    Only signature failures are rejected; every verified event is
    acknowledged whatever its business outcome.
    """

    def __init__(
        self,
        lifecycle: "OrderLifecycleManager",
        webhook_secret: str,
        tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ):
        """
        Initialize webhook ingestor.

        Args:
            lifecycle: Order lifecycle manager receiving confirmations
            webhook_secret: Endpoint signing secret (whsec_...)
            tolerance: Max age of the signed timestamp in seconds
        """
        self.lifecycle = lifecycle
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance
        self.event_handlers: Dict[str, EventHandler] = {}

        self.register_handler(PAYMENT_SUCCEEDED, self.handle_payment_succeeded)
        self.register_handler(PAYMENT_FAILED, self.handle_payment_failed)

        logger.info("webhook_ingestor_initialized")

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event_type: Stripe event type (e.g., 'payment_intent.succeeded')
            handler: Async callable receiving the event's data object and
                returning an outcome label
        """
        self.event_handlers[event_type] = handler
        logger.info("webhook_handler_registered", event_type=event_type)

    def verify(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify webhook signature and parse the event.

        Handlers receive the verified payload as plain JSON rather than a
        ``stripe.Event``.

        Args:
            payload: Raw request body, unparsed
            signature: Stripe-Signature header value

        Returns:
            Dict[str, Any]: Verified Stripe event

        Raises:
            SignatureInvalidError: If the header is missing, the signature or
                timestamp does not verify, or the payload is not a JSON event
        """
        if not signature:
            metrics.record_signature_failure()
            logger.error("webhook_signature_missing")
            raise SignatureInvalidError("Missing Stripe-Signature header")

        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self.webhook_secret,
                tolerance=self.tolerance,
            )
            event = json.loads(payload)
        except stripe.SignatureVerificationError as e:
            metrics.record_signature_failure()
            logger.error("webhook_signature_verification_failed", error=str(e))
            raise SignatureInvalidError(f"Webhook Error: {e}") from e
        except ValueError as e:
            metrics.record_signature_failure()
            logger.error("webhook_payload_invalid", error=str(e))
            raise SignatureInvalidError(f"Webhook Error: invalid payload ({e})") from e

        if not isinstance(event, dict) or "id" not in event or "type" not in event:
            metrics.record_signature_failure()
            logger.error("webhook_payload_invalid", error="not a Stripe event")
            raise SignatureInvalidError("Webhook Error: invalid payload (not a Stripe event)")

        logger.info(
            "webhook_signature_verified",
            event_id=event["id"],
            event_type=event["type"],
        )
        return event

    async def ingest(self, payload: bytes, signature: Optional[str]) -> WebhookAck:
        """
        Verify and process one webhook delivery.

        Returns:
            WebhookAck: Acknowledgement for the verified event

        Raises:
            SignatureInvalidError: Only when verification fails
        """
        event = self.verify(payload, signature)
        event_id = event["id"]
        event_type = event["type"]

        handler = self.event_handlers.get(event_type)
        if handler is None:
            logger.info("webhook_unhandled_event_type", event_id=event_id, event_type=event_type)
            metrics.record_webhook_event(event_type, "ignored")
            return WebhookAck(event_id, event_type, handled=False, outcome="ignored")

        try:
            outcome = await handler(event["data"]["object"])
        except Exception as e:
            # Verified events are always acknowledged.
            logger.exception(
                "webhook_event_processing_failed",
                event_id=event_id,
                event_type=event_type,
                error=str(e),
            )
            outcome = "error"

        metrics.record_webhook_event(event_type, outcome)
        logger.info(
            "webhook_event_processed",
            event_id=event_id,
            event_type=event_type,
            outcome=outcome,
        )
        return WebhookAck(event_id, event_type, handled=True, outcome=outcome)

    async def handle_payment_succeeded(self, payment_intent: Mapping[str, Any]) -> str:
        """
        Handle payment_intent.succeeded event.

        Reads ``orderId`` and the owner from the intent metadata written at
        creation. Events created before ``subjectId`` was added carry only
        ``userId``.
        """
        metadata = dict(payment_intent.get("metadata") or {})
        order_id = metadata.get("orderId")

        try:
            role = Role(metadata.get("role") or Role.USER.value)
        except ValueError:
            logger.warning(
                "webhook_metadata_invalid_role",
                payment_intent_id=payment_intent.get("id"),
                role=metadata.get("role"),
            )
            return "invalid_metadata"

        subject_id = metadata.get("subjectId") or metadata.get(SUBJECT_CLAIMS[role])
        if not order_id or not subject_id:
            logger.warning(
                "webhook_metadata_missing",
                payment_intent_id=payment_intent.get("id"),
                has_order_id=bool(order_id),
                has_subject_id=bool(subject_id),
            )
            return "missing_metadata"

        outcome = await self.lifecycle.confirm_from_webhook(role, subject_id, order_id)
        return outcome.value

    async def handle_payment_failed(self, payment_intent: Mapping[str, Any]) -> str:
        """Orders have no failed state; the failure is only logged."""
        metadata = dict(payment_intent.get("metadata") or {})
        last_error = payment_intent.get("last_payment_error") or {}
        logger.warning(
            "payment_intent_failed",
            payment_intent_id=payment_intent.get("id"),
            order_id=metadata.get("orderId"),
            error=last_error.get("message", "Unknown error"),
        )
        return "logged"
