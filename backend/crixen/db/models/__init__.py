"""Re-export all models so Base.metadata sees them."""

from crixen.db.models.order import ORDER_PAID, ORDER_PENDING, Order
from crixen.db.models.ticket import Ticket
from crixen.db.models.user import User

__all__ = [
    "ORDER_PAID",
    "ORDER_PENDING",
    "Order",
    "Ticket",
    "User",
]
