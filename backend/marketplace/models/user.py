"""User model"""
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from marketplace.models.base import Base


class User(Base):
    """Marketplace accounts (buyers and seller owners)"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    sellers = relationship("Seller", back_populates="owner")
    orders = relationship("Order", back_populates="buyer")
    notifications = relationship("SellerNotification", back_populates="recipient", cascade="all, delete-orphan")
