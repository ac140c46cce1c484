"""
FastAPI dependencies reading services from ``app.state``.

All are coroutines so they run on the event loop; a sync dependency runs in
a worker thread and the log context it binds is lost.
"""
import json

from fastapi import Depends, Request

from order_reconciler.core.auth import AuthContextResolver, Principal
from order_reconciler.core.errors import OrderValidationError
from order_reconciler.core.lifecycle import OrderLifecycleManager
from order_reconciler.integrations.webhook_handler import WebhookIngestor
from order_reconciler.monitoring.health import HealthCheck

from .schemas import CreateOrderRequest


async def get_resolver(request: Request) -> AuthContextResolver:
    return request.app.state.resolver


async def get_lifecycle(request: Request) -> OrderLifecycleManager:
    return request.app.state.lifecycle


async def get_ingestor(request: Request) -> WebhookIngestor:
    return request.app.state.ingestor


async def get_health(request: Request) -> HealthCheck:
    return request.app.state.health


async def get_principal(
    request: Request,
    resolver: AuthContextResolver = Depends(get_resolver),
) -> Principal:
    """
    Resolve the caller from the ``Authorization`` header.

    Raises:
        UnauthenticatedError: Missing, malformed, expired or unverifiable token
        ForbiddenError: Verified token with an unknown role or missing subject claim
    """
    return resolver.resolve_header(request.headers.get("Authorization"))


async def get_order_request(
    request: Request,
    principal: Principal = Depends(get_principal),
) -> CreateOrderRequest:
    """
    Parse the create-order body once the caller is authenticated.

    An empty body is an empty request; the lifecycle manager rejects the
    missing fields.

    Raises:
        OrderValidationError: Body is not valid JSON or not a JSON object
    """
    raw = await request.body()
    if not raw.strip():
        return CreateOrderRequest()

    try:
        data = json.loads(raw)
    except ValueError as e:
        raise OrderValidationError("Request body must be valid JSON") from e

    if not isinstance(data, dict):
        raise OrderValidationError("Request body must be a JSON object")
    return CreateOrderRequest.model_validate(data)
