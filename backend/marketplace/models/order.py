"""Order and OrderLineItem models"""
from sqlalchemy import Column, Integer, String, DateTime, Numeric, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from marketplace.models.base import Base


class Order(Base):
    """Materialized order, exactly one per external transaction id"""
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("external_transaction_id", name="uq_orders_external_transaction_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    external_transaction_id = Column(String(255), nullable=False, index=True)  # Checkout session id (idempotency key)
    payment_intent_id = Column(String(255), nullable=True, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    total_amount = Column(Numeric(10, 2), nullable=False)
    shipping_amount = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False)
    status = Column(String(20), nullable=False, default="created", index=True)  # created, paid, processing, shipped, delivered, cancelled
    payment_status = Column(String(20), nullable=False, default="pending")  # pending, paid, failed
    shipping_address = Column(JSON, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    notified_at = Column(DateTime(timezone=True), nullable=True, index=True)  # NULL until seller fan-out completes
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    buyer = relationship("User", back_populates="orders")
    line_items = relationship("OrderLineItem", back_populates="order", cascade="all, delete-orphan", passive_deletes=True)


class OrderLineItem(Base):
    """One cart line of an order with its payout/commission split"""
    __tablename__ = "order_line_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(64), nullable=False, index=True)
    seller_id = Column(Integer, nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    seller_payout_amount = Column(Numeric(10, 2), nullable=False)
    platform_commission = Column(Numeric(10, 2), nullable=False)
    commission_rate = Column(Numeric(5, 2), nullable=False)  # Percentage, e.g. 15.00
    payout_status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    order = relationship("Order", back_populates="line_items")

    @property
    def line_total(self):
        return self.unit_price * self.quantity
