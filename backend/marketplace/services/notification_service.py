"""Seller notification fan-out and buyer confirmation email

An order whose ``notified_at`` is NULL still owes its sellers a notification.
``fan_out_order`` settles that debt and is safe to run any number of times:
notification rows are unique per (order, seller) and the buyer email is only
sent by the call that stamps ``notified_at``.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from marketplace.core.metrics import seller_notifications_counter, order_emails_counter
from marketplace.models.order import Order, OrderLineItem
from marketplace.models.seller import Seller
from marketplace.models.seller_notification import SellerNotification
from marketplace.models.user import User
from marketplace.services import email_service

logger = logging.getLogger(__name__)

NEW_ORDER_TYPE = "new_order"
NEW_ORDER_TITLE = "New order received"


@dataclass
class SellerPortion:
    seller_id: int
    item_count: int
    amount: Decimal


@dataclass
class FanOutResult:
    order_id: int
    created: int = 0
    skipped: int = 0
    unknown_sellers: int = 0
    stamped: bool = False
    email_sent: bool = False


def group_line_items_by_seller(line_items: Iterable[OrderLineItem]) -> List[SellerPortion]:
    """Aggregate an order's lines into one portion per seller, in first-seen order

    item_count is the total quantity, amount the gross (unit price x quantity).
    """
    portions: Dict[int, SellerPortion] = OrderedDict()
    for item in line_items:
        portion = portions.get(item.seller_id)
        if portion is None:
            portion = portions[item.seller_id] = SellerPortion(item.seller_id, 0, Decimal("0.00"))
        portion.item_count += item.quantity
        portion.amount += item.unit_price * item.quantity
    return list(portions.values())


def _notification_message(order: Order, portion: SellerPortion) -> str:
    items = "item" if portion.item_count == 1 else "items"
    return (
        f"Order {email_service.order_reference(order)}: {portion.item_count} {items} "
        f"for {portion.amount:.2f} {order.currency.upper()}"
    )


def _insert_notification(order: Order, portion: SellerPortion, recipient_id: int, db: Session) -> bool:
    """Insert one seller's notification; False when it already exists"""
    notification = SellerNotification(
        recipient_id=recipient_id,
        order_id=order.id,
        seller_id=portion.seller_id,
        type=NEW_ORDER_TYPE,
        title=NEW_ORDER_TITLE,
        message=_notification_message(order, portion),
        data={
            "order_id": order.id,
            "item_count": portion.item_count,
            "amount": str(portion.amount),
        },
    )
    db.add(notification)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent dispatcher got there first
        db.rollback()
        return False
    return True


def _stamp_notified(order_id: int, db: Session) -> bool:
    """Mark the order's outbox entry done; True only for the call that flips it"""
    updated = (
        db.query(Order)
        .filter(Order.id == order_id, Order.notified_at.is_(None))
        .update({"notified_at": datetime.now(timezone.utc)}, synchronize_session=False)
    )
    db.commit()
    return updated == 1


def _send_buyer_email(order: Order, db: Session) -> bool:
    buyer = db.get(User, order.buyer_id)
    if buyer is None or not buyer.email:
        logger.warning(f"Order {order.id}: buyer {order.buyer_id} has no email address, confirmation not sent")
        order_emails_counter.labels(status="skipped").inc()
        return False

    sent = email_service.send_order_confirmation_email(order, buyer.email, buyer.full_name)
    order_emails_counter.labels(status="sent" if sent else "failed").inc()
    if not sent:
        logger.error(f"Order {order.id}: buyer confirmation email to {buyer.email} failed")
    return sent


def fan_out_order(order_id: int, db: Session) -> FanOutResult:
    """Notify every seller in the order once, then the buyer once"""
    result = FanOutResult(order_id=order_id)

    order = (
        db.query(Order)
        .options(selectinload(Order.line_items))
        .filter(Order.id == order_id)
        .first()
    )
    if order is None:
        logger.warning(f"Fan-out requested for unknown order {order_id}")
        return result
    if not order.line_items:
        logger.warning(f"Order {order_id} has no line items yet, fan-out deferred")
        return result

    portions = group_line_items_by_seller(order.line_items)
    seller_ids = [p.seller_id for p in portions]
    owners = {
        seller.id: seller.user_id
        for seller in db.query(Seller).filter(Seller.id.in_(seller_ids)).all()
    }
    already_notified = {
        row.seller_id
        for row in db.query(SellerNotification.seller_id).filter(SellerNotification.order_id == order_id).all()
    }

    for portion in portions:
        if portion.seller_id in already_notified:
            result.skipped += 1
            seller_notifications_counter.labels(status="skipped").inc()
            continue

        recipient_id = owners.get(portion.seller_id)
        if recipient_id is None:
            result.unknown_sellers += 1
            seller_notifications_counter.labels(status="unknown_seller").inc()
            logger.error(f"Order {order_id}: seller {portion.seller_id} not found, notification not created")
            continue

        if _insert_notification(order, portion, recipient_id, db):
            result.created += 1
            seller_notifications_counter.labels(status="created").inc()
        else:
            result.skipped += 1
            seller_notifications_counter.labels(status="skipped").inc()

    result.stamped = _stamp_notified(order_id, db)
    if result.stamped:
        result.email_sent = _send_buyer_email(order, db)

    logger.info(
        f"Fan-out for order {order_id}: {result.created} created, {result.skipped} existing, "
        f"{result.unknown_sellers} unknown seller(s), email_sent={result.email_sent}"
    )
    return result


def dispatch_order_notifications(order_id: int, session_factory: Callable[[], Session]) -> None:
    """Background entry point: run the fan-out in its own session and never raise

    A failure here leaves ``notified_at`` NULL, so the sweeper retries later.
    """
    db = session_factory()
    try:
        fan_out_order(order_id, db)
    except Exception as e:
        db.rollback()
        seller_notifications_counter.labels(status="failed").inc()
        logger.error(f"Notification delivery failed for order {order_id}: {e}", exc_info=True)
    finally:
        db.close()
