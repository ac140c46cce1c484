"""
Order store adapter.

Wraps the ``orders`` table behind the handful of atomic operations the
lifecycle manager needs. Each operation runs in its own short transaction;
status changes are a single conditional UPDATE so concurrent transitions on
the same order are serialized by the database.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

import structlog
from sqlalchemy import and_, func, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_reconciler.core.auth import Principal, Role
from order_reconciler.core.errors import StoreError
from order_reconciler.database.models import ALLOWED_PREDECESSORS, Order, OrderStatus

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class NewOrder:
    """Fields of an order about to be appended to a principal's collection."""

    order_id: str
    provider: str
    provider_reference: str
    total_amount: Decimal
    currency: str
    products: List[Any] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class OrderRecord:
    """Read-only snapshot of a stored order."""

    order_id: str
    owner_role: Role
    owner_id: str
    provider: str
    provider_reference: str
    total_amount: Decimal
    currency: str
    products: List[Any]
    status: OrderStatus
    capture_reference: Optional[str]
    created_at: datetime
    paid_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: Order) -> "OrderRecord":
        return cls(
            order_id=row.order_id,
            owner_role=Role(row.owner_role),
            owner_id=row.owner_id,
            provider=row.provider,
            provider_reference=row.provider_reference,
            total_amount=Decimal(row.total_amount),
            currency=row.currency,
            products=list(row.products or []),
            status=OrderStatus(row.status),
            capture_reference=row.capture_reference,
            created_at=row.created_at,
            paid_at=row.paid_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "orderId": self.order_id,
            "provider": self.provider,
            "providerReference": self.provider_reference,
            "totalAmount": str(self.total_amount),
            "currency": self.currency,
            "products": self.products,
            "status": self.status.value,
            "captureReference": self.capture_reference,
            "date": self.created_at.isoformat(),
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
        }


def _owned_by(owner_role: Role, owner_id: str) -> Any:
    return and_(Order.owner_role == owner_role.value, Order.owner_id == owner_id)


class OrderStore:
    """Atomic order operations scoped to one principal's collection."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """
        Initialize order store.

        Args:
            session_factory: Session factory bound to the orders database
        """
        self.session_factory = session_factory

    async def append(self, principal: Principal, order: NewOrder) -> OrderRecord:
        """
        Append a new ``Created`` order to the principal's collection.

        Raises:
            StoreError: If the insert fails (including a duplicate order id)
        """
        row = Order(
            order_id=order.order_id,
            owner_role=principal.role.value,
            owner_id=principal.subject_id,
            provider=order.provider,
            provider_reference=order.provider_reference,
            total_amount=order.total_amount,
            currency=order.currency,
            products=list(order.products),
            status=OrderStatus.CREATED.value,
            created_at=order.created_at,
            updated_at=order.created_at,
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(row)
        except SQLAlchemyError as e:
            logger.error(
                "order_append_failed",
                order_id=order.order_id,
                owner_role=principal.role.value,
                owner_id=principal.subject_id,
                error=str(e),
            )
            raise StoreError(f"Failed to store order {order.order_id}") from e

        logger.info(
            "order_appended",
            order_id=order.order_id,
            provider=order.provider,
            provider_reference=order.provider_reference,
        )
        return OrderRecord.from_row(row)

    async def conditional_update_status(
        self,
        owner_role: Role,
        owner_id: str,
        order_id: str,
        new_status: OrderStatus,
        capture_reference: Optional[str] = None,
    ) -> bool:
        """
        Move one order to ``new_status`` if it is in an allowed predecessor state.

        The update is keyed by ``(owner_role, owner_id, order_id)``. Timestamps
        and capture references already set are kept, so re-applying the same
        transition changes nothing.

        Returns:
            bool: True if an order matched, False otherwise

        Raises:
            StoreError: If the update fails
        """
        allowed = [status.value for status in ALLOWED_PREDECESSORS[new_status]]
        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {"status": new_status.value, "updated_at": now}
        if new_status is OrderStatus.PAID:
            values["paid_at"] = func.coalesce(Order.paid_at, now)
        if capture_reference is not None:
            values["capture_reference"] = func.coalesce(
                Order.capture_reference, capture_reference
            )

        stmt = (
            update(Order)
            .where(_owned_by(owner_role, owner_id))
            .where(Order.order_id == order_id)
            .where(Order.status.in_(allowed))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "order_status_update_failed",
                order_id=order_id,
                owner_role=owner_role.value,
                owner_id=owner_id,
                new_status=new_status.value,
                error=str(e),
            )
            raise StoreError(f"Failed to update order {order_id}") from e

        matched = result.rowcount > 0
        logger.info(
            "order_status_update",
            order_id=order_id,
            new_status=new_status.value,
            matched=matched,
        )
        return matched

    async def _fetch_one(self, stmt: Any) -> Optional[OrderRecord]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                row = result.scalars().first()
        except SQLAlchemyError as e:
            logger.error("order_lookup_failed", error=str(e))
            raise StoreError("Failed to read orders") from e
        return OrderRecord.from_row(row) if row is not None else None

    async def find_most_recent(self, principal: Principal) -> Optional[OrderRecord]:
        """Most recently created order of the principal; insertion order breaks ties."""
        stmt = (
            select(Order)
            .where(_owned_by(principal.role, principal.subject_id))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(1)
        )
        return await self._fetch_one(stmt)

    async def get(self, principal: Principal, order_id: str) -> Optional[OrderRecord]:
        """Order ``order_id`` if it belongs to the principal."""
        stmt = (
            select(Order)
            .where(_owned_by(principal.role, principal.subject_id))
            .where(Order.order_id == order_id)
        )
        return await self._fetch_one(stmt)

    async def list_for(self, principal: Principal, limit: int = 50) -> List[OrderRecord]:
        """Principal's orders, most recent first."""
        stmt = (
            select(Order)
            .where(_owned_by(principal.role, principal.subject_id))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("order_list_failed", error=str(e))
            raise StoreError("Failed to read orders") from e
        return [OrderRecord.from_row(row) for row in rows]

    async def ping(self) -> None:
        """Round-trip a trivial query; raises ``StoreError`` when unreachable."""
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise StoreError(f"Database unreachable: {e}") from e
