from returnsdesk.db.base import Base  # noqa: F401
from returnsdesk.models.user import User, UserRole  # noqa: F401
from returnsdesk.models.order import Order, OrderStatus  # noqa: F401
from returnsdesk.models.returns import (  # noqa: F401
    RefundSettlement,
    ReturnReasonCategory,
    ReturnRequest,
    ReturnRequestEvent,
    ReturnRequestStatus,
)

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Order",
    "OrderStatus",
    "RefundSettlement",
    "ReturnReasonCategory",
    "ReturnRequest",
    "ReturnRequestEvent",
    "ReturnRequestStatus",
]
