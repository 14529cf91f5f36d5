"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from marketplace.models.base import Base
from marketplace.models.user import User
from marketplace.models.seller import Seller
from marketplace.models.order import Order, OrderLineItem
from marketplace.models.seller_notification import SellerNotification
from marketplace.models.failed_event import FailedEvent

# Export all for convenience
__all__ = [
    "Base", "User", "Seller", "Order", "OrderLineItem",
    "SellerNotification", "FailedEvent"
]
