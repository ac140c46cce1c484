"""
FastAPI application factory.

Order reconciliation API with:
- CORS configuration
- Error handling mapped from the order error taxonomy
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from order_reconciler import __version__
from order_reconciler.config import Settings, get_settings
from order_reconciler.core.auth import AuthContextResolver
from order_reconciler.core.errors import OrderError, OrderValidationError
from order_reconciler.core.lifecycle import OrderLifecycleManager
from order_reconciler.database.connection import close_db, create_engine, create_session_factory, init_db
from order_reconciler.database.store import OrderStore
from order_reconciler.integrations.gateway import Provider, ProviderGateway
from order_reconciler.integrations.paypal_client import PayPalGateway
from order_reconciler.integrations.stripe_client import StripeGateway
from order_reconciler.integrations.webhook_handler import WebhookIngestor
from order_reconciler.monitoring.health import HealthCheck
from order_reconciler.monitoring.logging import setup_logging

from .routes import monitoring_router, order_router, webhook_router

logger = structlog.get_logger(__name__)


def build_gateways(settings: Settings) -> Dict[Provider, ProviderGateway]:
    """Construct one gateway per provider from settings."""
    return {
        Provider.STRIPE: StripeGateway(
            api_key=settings.stripe_secret_key,
            api_version=settings.stripe_api_version,
            timeout_seconds=settings.provider_timeout_seconds,
        ),
        Provider.PAYPAL: PayPalGateway(
            client_id=settings.paypal_client_id,
            client_secret=settings.paypal_client_secret,
            base_url=settings.paypal_base_url,
            timeout_seconds=settings.provider_timeout_seconds,
        ),
    }


def create_app(
    settings: Optional[Settings] = None,
    lifecycle: Optional[OrderLifecycleManager] = None,
    ingestor: Optional[WebhookIngestor] = None,
    resolver: Optional[AuthContextResolver] = None,
    health: Optional[HealthCheck] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Services passed in are used as-is. When no lifecycle manager is given,
    the lifespan hook creates the database engine, the store and the provider
    gateways, and disposes of them on shutdown.

    Args:
        settings: Application settings (defaults to environment settings)
        lifecycle: Order lifecycle manager
        ingestor: Stripe webhook ingestor
        resolver: Bearer token resolver
        health: Health check service
    """
    settings = settings or get_settings()
    setup_logging(settings)

    if lifecycle is not None:
        ingestor = ingestor or WebhookIngestor(
            lifecycle, settings.stripe_webhook_secret, settings.stripe_webhook_tolerance
        )
        health = health or HealthCheck(lifecycle.store)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
        """
        Application lifespan manager.

        Handles startup and shutdown events.
        """
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            env=settings.app_env,
            test_mode=settings.is_test_mode,
        )

        engine = None
        gateways: Dict[Provider, ProviderGateway] = {}
        if app.state.lifecycle is None:
            try:
                engine = create_engine(settings)
                await init_db(engine)
                logger.info("database_initialized")
            except Exception as e:
                logger.error("database_initialization_failed", error=str(e))
                raise

            store = OrderStore(create_session_factory(engine))
            gateways = build_gateways(settings)
            app.state.lifecycle = OrderLifecycleManager(
                store, gateways, currency=settings.order_currency
            )
            app.state.ingestor = WebhookIngestor(
                app.state.lifecycle,
                settings.stripe_webhook_secret,
                settings.stripe_webhook_tolerance,
            )
            app.state.health = HealthCheck(store)

        yield

        logger.info("application_shutdown")
        for gateway in gateways.values():
            await gateway.aclose()
        if engine is not None:
            await close_db(engine)
            logger.info("database_connections_closed")

    app = FastAPI(
        title="Order Reconciler",
        description=(
            "Payment-order reconciliation service. Records orders against Stripe and "
            "PayPal and confirms them through webhooks and explicit captures."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.state.settings = settings
    app.state.resolver = resolver or AuthContextResolver(
        settings.session_secret, algorithms=(settings.jwt_algorithm,)
    )
    app.state.lifecycle = lifecycle
    app.state.ingestor = ingestor
    app.state.health = health

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
        """Add request ID to all requests for tracing."""
        request_id = str(uuid.uuid4())
        start_time = time.time()

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        logger.info(
            "request_started",
            client_host=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=time.time() - start_time,
            )
            return response
        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_seconds=time.time() - start_time,
            )
            raise
        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(OrderError)
    async def order_error_handler(request: Request, exc: OrderError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "order_error",
            error_kind=exc.kind,
            error=exc.message,
            status_code=exc.status_code,
            path=request.url.path,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Render framework validation failures like ``OrderValidationError``."""
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        logger.warning("request_validation_failed", error=message, path=request.url.path)
        error = OrderValidationError(message)
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred. Please try again later.",
            },
        )

    app.include_router(order_router)
    app.include_router(webhook_router)
    app.include_router(monitoring_router)

    return app


def main() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "order_reconciler.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
