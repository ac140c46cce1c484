"""
Readiness checks for the orchestrator probe.

Checks:
- Database connectivity through the order store
"""
from typing import Any, Dict

import structlog

from order_reconciler.core.errors import StoreError
from order_reconciler.database.store import OrderStore

logger = structlog.get_logger(__name__)


class HealthCheck:
    """Health check service for monitoring system dependencies."""

    def __init__(self, store: OrderStore) -> None:
        self.store = store

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict[str, Any]: Database health status
        """
        try:
            await self.store.ping()
        except StoreError as e:
            logger.error("database_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "service": "database",
                "error": str(e),
            }
        return {
            "status": "healthy",
            "service": "database",
            "message": "Database connection successful",
        }

    async def readiness(self) -> Dict[str, Any]:
        """
        Readiness probe.

        Provider APIs are not probed: they are reached per request and
        failures there surface as provider errors.
        """
        database = await self.check_database()
        return {
            "status": database["status"],
            "checks": {"database": database},
        }
