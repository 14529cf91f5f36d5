"""Background sweeper that re-dispatches seller notifications left undelivered"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.db.session import SessionLocal
from marketplace.models.order import Order
from marketplace.services.notification_service import dispatch_order_notifications

sweeper_logger = logging.getLogger("notification_sweeper")


def find_unnotified_orders(db: Session, older_than: datetime, limit: int) -> List[int]:
    """Ids of orders still owing notifications, oldest first

    Orders younger than ``older_than`` are left to the dispatch scheduled by
    the ingestion request. Headers without line items have nothing to notify
    about and are skipped so they cannot fill every batch.
    """
    rows = (
        db.query(Order.id)
        .filter(Order.notified_at.is_(None), Order.created_at < older_than, Order.line_items.any())
        .order_by(Order.created_at)
        .limit(limit)
        .all()
    )
    return [row.id for row in rows]


def sweep_unnotified_orders(
    session_factory: Callable[[], Session] = SessionLocal,
    now: Optional[datetime] = None
) -> int:
    """Run the fan-out for every overdue order; returns how many were dispatched"""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=settings.NOTIFICATION_SWEEP_GRACE_SECONDS)

    db = session_factory()
    try:
        order_ids = find_unnotified_orders(db, cutoff, settings.NOTIFICATION_SWEEP_BATCH_SIZE)
    finally:
        db.close()

    for order_id in order_ids:
        dispatch_order_notifications(order_id, session_factory)

    if order_ids:
        sweeper_logger.info(f"Re-dispatched notifications for {len(order_ids)} order(s)")
    return len(order_ids)


async def notification_sweeper_task():
    """Periodically retry the notification outbox"""
    while True:
        try:
            await asyncio.sleep(settings.NOTIFICATION_SWEEP_INTERVAL)
            await asyncio.to_thread(sweep_unnotified_orders)
        except asyncio.CancelledError:
            sweeper_logger.info("Notification sweeper stopped")
            raise
        except Exception as e:
            sweeper_logger.error(f"Error in notification sweeper: {e}", exc_info=True)
