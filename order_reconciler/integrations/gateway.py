"""
Payment provider gateway contract.

Two confirmation models are supported:

* push: the client pays the provider directly and success arrives later by
  webhook (``ProviderGateway``);
* pull: the server must capture an approved payment explicitly
  (``CapturingGateway``).
"""
import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import structlog

from order_reconciler.core.auth import Principal
from order_reconciler.core.errors import ProviderError
from order_reconciler.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Provider(str, Enum):
    """Configured payment providers."""

    STRIPE = "stripe"
    PAYPAL = "paypal"


@dataclass(frozen=True)
class CorrelationMetadata:
    """Identifiers attached to a remote payment so it can be traced back."""

    order_id: str
    principal: Principal

    def as_metadata(self) -> Dict[str, str]:
        """Flat key/value form used by providers with a metadata map."""
        return {
            "orderId": self.order_id,
            "subjectId": self.principal.subject_id,
            "role": self.principal.role.value,
            self.principal.subject_claim: self.principal.subject_id,
        }


@dataclass(frozen=True)
class PaymentHandoff:
    """Result of a remote payment creation."""

    remote_reference: str
    client_handoff: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CaptureResult:
    """Result of a remote capture."""

    capture_reference: str
    order_id: Optional[str] = None
    raw_status: Optional[str] = None


class ProviderGateway(ABC):
    """Creates remote payments for one provider."""

    provider: Provider

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds

    async def _call(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        """
        Run one remote call under the configured timeout and record metrics.

        Timeouts surface as ``ProviderError``; other ``ProviderError`` raised
        by ``func`` propagate unchanged.
        """
        start = time.perf_counter()
        status = "error"
        try:
            result = await asyncio.wait_for(func(), timeout=self.timeout_seconds)
            status = "success"
            return result
        except asyncio.TimeoutError as e:
            status = "timeout"
            logger.error(
                "provider_call_timeout",
                provider=self.provider.value,
                operation=operation,
                timeout_seconds=self.timeout_seconds,
            )
            raise ProviderError(
                self.provider.value,
                f"{self.provider.value} {operation} timed out after {self.timeout_seconds}s",
                original_error=e,
            ) from e
        finally:
            metrics.record_provider_call(
                self.provider.value, operation, status, time.perf_counter() - start
            )

    @abstractmethod
    async def create_payment(
        self, amount: Decimal, currency: str, correlation: CorrelationMetadata
    ) -> PaymentHandoff:
        """
        Create a remote payment.

        Raises:
            ProviderError: If the provider call fails or times out
        """

    async def aclose(self) -> None:
        """Release transport resources held by the gateway."""


class CapturingGateway(ProviderGateway):
    """Gateway whose payments must be captured after user approval."""

    @abstractmethod
    async def capture_payment(self, remote_order_reference: str) -> CaptureResult:
        """
        Capture an approved remote payment.

        Raises:
            ProviderError: If the provider call fails or times out
        """
