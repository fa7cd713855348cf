"""The subscription-relevant projection of an account."""

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from crixen.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)

    # Subscription ("free" is a legacy value of "starter")
    tier = Column(String(20), nullable=False, default="starter", index=True)
    subscription_expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    expiry_reminder_sent = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))

    orders = relationship("Order", back_populates="user")
