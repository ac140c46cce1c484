"""
Error taxonomy for order operations.

Every error carries the HTTP status the API layer answers with, so callers
outside HTTP (workers, tests) can still reason about the failure kind.
"""
from typing import Any, Dict, Optional


class OrderError(Exception):
    """Base exception for order processing errors."""

    status_code: int = 500
    kind: str = "order_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Structured body returned to clients."""
        return {"error": self.kind, "message": self.message}


class UnauthenticatedError(OrderError):
    """Credential absent, malformed, expired or with an invalid signature."""

    status_code = 401
    kind = "unauthenticated"


class ForbiddenError(OrderError):
    """Credential verified but its role claim is missing or unusable."""

    status_code = 403
    kind = "forbidden"


class OrderValidationError(OrderError):
    """Raised when order input validation fails."""

    status_code = 400
    kind = "validation_error"


class ProviderError(OrderError):
    """
    A remote payment provider call failed or timed out.

    The provider's raw diagnostic is kept verbatim so support can match it
    against the provider dashboard.
    """

    status_code = 502
    kind = "provider_error"

    def __init__(
        self,
        provider: str,
        message: str,
        diagnostic: Optional[Any] = None,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize provider error.

        Args:
            provider: Provider name (stripe, paypal)
            message: Error message
            diagnostic: Raw provider diagnostic (error body, code)
            original_error: Original exception raised by the transport or SDK
        """
        super().__init__(message)
        self.provider = provider
        self.diagnostic = diagnostic
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["provider"] = self.provider
        if self.diagnostic is not None:
            body["diagnostic"] = self.diagnostic
        return body


class SignatureInvalidError(OrderError):
    """Webhook payload failed signature verification."""

    status_code = 400
    kind = "signature_invalid"


class OrderNotFoundError(OrderError):
    """No order matched a capture or recency lookup."""

    status_code = 404
    kind = "not_found"


class StoreError(OrderError):
    """The order store could not complete an operation."""

    status_code = 500
    kind = "store_error"
