"""SellerNotification model"""
from sqlalchemy import Column, Integer, String, Boolean, Text, JSON, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from marketplace.models.base import Base


class SellerNotification(Base):
    """In-app notification, one per seller per order"""
    __tablename__ = "seller_notifications"
    __table_args__ = (
        UniqueConstraint("order_id", "seller_id", name="uq_seller_notifications_order_seller"),
    )

    id = Column(Integer, primary_key=True, index=True)
    recipient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    seller_id = Column(Integer, nullable=False, index=True)
    type = Column(String(50), nullable=False, default="new_order")
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column("metadata", JSON, nullable=False)  # order_id, item_count, amount
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    recipient = relationship("User", back_populates="notifications")
