"""Database package for the order reconciler."""
from .connection import close_db, create_engine, create_session_factory, init_db
from .models import ALLOWED_PREDECESSORS, Base, Order, OrderStatus
from .store import NewOrder, OrderRecord, OrderStore

__all__ = [
    "ALLOWED_PREDECESSORS",
    "Base",
    "NewOrder",
    "Order",
    "OrderRecord",
    "OrderStatus",
    "OrderStore",
    "close_db",
    "create_engine",
    "create_session_factory",
    "init_db",
]
