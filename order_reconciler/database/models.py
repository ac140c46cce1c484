"""SQLAlchemy database models for order reconciliation."""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, FrozenSet, List, Mapping

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class OrderStatus(str, Enum):
    """Order lifecycle states. ``PAID`` is terminal."""

    CREATED = "Created"
    PAID = "Paid"


# States an order may be in immediately before entering the key state.
# Re-entering a state is allowed so redelivered confirmations are no-ops.
ALLOWED_PREDECESSORS: Mapping[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.CREATED: frozenset(),
    OrderStatus.PAID: frozenset({OrderStatus.CREATED, OrderStatus.PAID}),
}


class Order(Base):
    """
    Orders table.

    Each principal's order collection is the set of rows sharing
    ``(owner_role, owner_id)``; ``order_id`` is unique inside it and is the
    value sent to providers as correlation metadata.
    """

    __tablename__ = "orders"

    # Autoincrement id doubles as insertion order for recency tie-breaks.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(36), nullable=False)
    owner_role: Mapped[str] = mapped_column(String(20), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_reference: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    products: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderStatus.CREATED.value
    )
    capture_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("owner_role", "owner_id", "order_id", name="uq_orders_owner_order"),
        CheckConstraint("total_amount > 0", name="positive_amount"),
        CheckConstraint("status IN ('Created', 'Paid')", name="valid_status"),
        CheckConstraint("length(currency) = 3", name="valid_currency"),
        Index("idx_orders_owner_created", "owner_role", "owner_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation of Order."""
        return (
            f"<Order(order_id={self.order_id}, owner={self.owner_role}:{self.owner_id}, "
            f"amount={self.total_amount}, status={self.status})>"
        )
