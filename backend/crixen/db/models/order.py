"""One payment attempt, keyed by the provider correlation memo."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from crixen.db.base import Base

ORDER_PENDING = "pending"
ORDER_PAID = "paid"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # HOT Pay: our random token. Pingpay: provider session id.
    memo = Column(String(255), unique=True, nullable=False)
    provider = Column(String(20), nullable=False)
    amount = Column(String(32), nullable=False)  # decimal string, USD
    item_id = Column(String(255), nullable=True)

    # pending -> paid, never back
    status = Column(String(20), nullable=False, default=ORDER_PENDING, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    paid_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="orders")
    tickets = relationship("Ticket", back_populates="order")
