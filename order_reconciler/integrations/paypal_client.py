"""
PayPal gateway for pull-confirmed payments (REST Orders v2).

Implements:
- OAuth2 client-credentials token with in-process caching
- Order creation carrying the local order id as ``reference_id``
- Explicit capture after buyer approval
"""
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
import structlog

from order_reconciler.core.errors import ProviderError

from .gateway import CaptureResult, CapturingGateway, CorrelationMetadata, PaymentHandoff, Provider

logger = structlog.get_logger(__name__)

# Refresh the access token this many seconds before PayPal expires it.
TOKEN_EXPIRY_MARGIN_SECONDS = 60

APPROVAL_LINK_RELS = ("approve", "payer-action")


def format_amount(amount: Decimal) -> str:
    """PayPal expects amounts as strings with two decimals."""
    return str(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def find_approval_url(links: List[Dict[str, Any]]) -> Optional[str]:
    for rel in APPROVAL_LINK_RELS:
        for link in links:
            if link.get("rel") == rel and link.get("href"):
                return link["href"]
    return None


class PayPalGateway(CapturingGateway):
    """
    Client for the PayPal Orders v2 API.

    Owns one ``httpx.AsyncClient`` for the lifetime of the process; call
    ``aclose`` on shutdown.
    """

    provider = Provider.PAYPAL

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        timeout_seconds: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize PayPal gateway.

        Args:
            client_id: REST app client id
            client_secret: REST app secret
            base_url: Sandbox or live API base URL
            timeout_seconds: Upper bound for every PayPal call
            transport: Optional httpx transport (tests inject a mock transport)
        """
        super().__init__(timeout_seconds)
        self.client_id = client_id
        self.client_secret = client_secret
        self.http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

        logger.info("paypal_gateway_initialized", base_url=base_url)

    def _error(self, message: str, diagnostic: Any = None, error: Optional[Exception] = None) -> ProviderError:
        logger.error("paypal_api_error", error=message, diagnostic=diagnostic)
        return ProviderError(self.provider.value, message, diagnostic=diagnostic, original_error=error)

    def _parse(self, response: httpx.Response, operation: str) -> Dict[str, Any]:
        """Decode a PayPal response, raising ``ProviderError`` for non-2xx answers."""
        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text}

        if response.is_success:
            return body
        raise self._error(
            f"PayPal {operation} failed with HTTP {response.status_code}",
            diagnostic=body,
        )

    async def _send(self, operation: str, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self.http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise self._error(f"PayPal {operation} timed out", diagnostic=str(e), error=e) from e
        except httpx.HTTPError as e:
            raise self._error(f"PayPal {operation} request failed: {e}", diagnostic=str(e), error=e) from e
        return self._parse(response, operation)

    async def _get_access_token(self) -> str:
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        data = await self._send(
            "authenticate",
            "POST",
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
        )
        token = data.get("access_token")
        if not token:
            raise self._error("PayPal token response had no access_token", diagnostic=data)

        expires_in = float(data.get("expires_in", 0))
        self._access_token = token
        self._token_expires_at = time.monotonic() + max(
            expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0
        )
        return token

    async def _authorized(self, operation: str, method: str, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        token = await self._get_access_token()
        return await self._send(
            operation,
            method,
            url,
            json=body,
            headers={
                "Authorization": f"Bearer {token}",
                "Prefer": "return=representation",
            },
        )

    async def create_payment(
        self, amount: Decimal, currency: str, correlation: CorrelationMetadata
    ) -> PaymentHandoff:
        """
        Create a PayPal order awaiting buyer approval.

        Returns:
            PaymentHandoff: PayPal order id plus ``id``, ``links`` and ``approvalUrl``

        Raises:
            ProviderError: If the order cannot be created or has no approval link
        """
        principal = correlation.principal
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": correlation.order_id,
                    "custom_id": f"{principal.role.value}:{principal.subject_id}",
                    "amount": {
                        "currency_code": currency.upper(),
                        "value": format_amount(amount),
                    },
                }
            ],
        }
        logger.info(
            "creating_paypal_order",
            order_id=correlation.order_id,
            amount=format_amount(amount),
            currency=currency,
        )

        async def _create() -> Dict[str, Any]:
            return await self._authorized("create_order", "POST", "/v2/checkout/orders", body)

        data = await self._call("create_payment", _create)

        paypal_order_id = data.get("id")
        links = data.get("links") or []
        approval_url = find_approval_url(links)
        if not paypal_order_id or not approval_url:
            raise self._error("PayPal order response had no id or approval link", diagnostic=data)

        logger.info(
            "paypal_order_created",
            order_id=correlation.order_id,
            paypal_order_id=paypal_order_id,
            status=data.get("status"),
        )
        return PaymentHandoff(
            remote_reference=paypal_order_id,
            client_handoff={
                "id": paypal_order_id,
                "links": links,
                "approvalUrl": approval_url,
            },
        )

    async def capture_payment(self, remote_order_reference: str) -> CaptureResult:
        """
        Capture an approved PayPal order.

        Returns:
            CaptureResult: Capture id and, when PayPal echoes it, the local order id

        Raises:
            ProviderError: If the capture fails or the response has no capture id
        """
        logger.info("capturing_paypal_order", paypal_order_id=remote_order_reference)

        async def _capture() -> Dict[str, Any]:
            return await self._authorized(
                "capture_order",
                "POST",
                f"/v2/checkout/orders/{quote(remote_order_reference, safe='')}/capture",
                {},
            )

        data = await self._call("capture_payment", _capture)

        try:
            unit = data["purchase_units"][0]
            capture_id = unit["payments"]["captures"][0]["id"]
        except (KeyError, IndexError, TypeError) as e:
            raise self._error("PayPal capture response had no capture id", diagnostic=data, error=e) from e

        logger.info(
            "paypal_order_captured",
            paypal_order_id=remote_order_reference,
            capture_id=capture_id,
            status=data.get("status"),
        )
        return CaptureResult(
            capture_reference=capture_id,
            order_id=unit.get("reference_id"),
            raw_status=data.get("status"),
        )

    async def aclose(self) -> None:
        await self.http.aclose()
