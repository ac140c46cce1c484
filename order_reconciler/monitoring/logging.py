"""
Structured logging configuration.

structlog collects the event and its context; the stdlib handler renders each
record exactly once as JSON through python-json-logger. Third-party loggers
share that handler and come out in the same shape.
"""
import logging
import sys
from typing import Any, Callable

import structlog
from pythonjsonlogger.json import JsonFormatter

from order_reconciler.config import Settings

LOG_FORMAT = "%(timestamp)s %(levelname)s %(name)s %(message)s"
RENAMED_FIELDS = {
    "timestamp": "@timestamp",
    "levelname": "level",
    "name": "logger",
}


def app_context_processor(settings: Settings) -> Callable[..., dict[str, Any]]:
    """Build a processor that stamps the app name and environment on events."""

    def add_app_context(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        event_dict["app_name"] = settings.app_name
        event_dict["app_env"] = settings.app_env
        return event_dict

    return add_app_context


def build_formatter() -> logging.Formatter:
    return JsonFormatter(LOG_FORMAT, rename_fields=RENAMED_FIELDS)


def setup_logging(settings: Settings) -> None:
    """
    Configure structlog and the root logger.

    Event context (request id, principal) comes from contextvars and is
    passed to the stdlib record as ``extra`` fields.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            app_context_processor(settings),
            structlog.stdlib.render_to_log_kwargs,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(build_formatter())
    root_logger.addHandler(json_handler)

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.INFO)

    logger = structlog.get_logger(__name__)
    logger.info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )
