"""Order materialization - idempotency gate, header/line-item writes, compensation"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from marketplace.core.config import settings
from marketplace.core.exceptions import PartialWriteFailure
from marketplace.core.metrics import orders_materialized_counter
from marketplace.models.order import Order, OrderLineItem
from marketplace.schemas.payment_events import CheckoutIntent
from marketplace.services.order_lifecycle import OrderState

logger = logging.getLogger(__name__)


@dataclass
class MaterializationResult:
    order: Order
    created: bool  # False when another delivery already materialized this transaction


def get_order_by_transaction_id(
    external_transaction_id: str,
    db: Session,
    require_items: bool = False
) -> Optional[Order]:
    """Look up an order by its gateway transaction id

    With ``require_items`` a header whose line items are not written yet is
    treated as absent, so readers never observe a half-materialized order.
    """
    query = (
        db.query(Order)
        .options(selectinload(Order.line_items))
        .filter(Order.external_transaction_id == external_transaction_id)
    )
    if require_items:
        query = query.filter(Order.line_items.any())
    return query.first()


def get_order_by_payment_intent(payment_intent_id: str, db: Session) -> Optional[Order]:
    return db.query(Order).filter(Order.payment_intent_id == payment_intent_id).first()


def _insert_order_header(intent: CheckoutIntent, db: Session) -> Order:
    now = datetime.now(timezone.utc)
    order = Order(
        external_transaction_id=intent.external_transaction_id,
        payment_intent_id=intent.payment_intent_id,
        buyer_id=intent.buyer_id,
        total_amount=intent.total_amount,
        shipping_amount=intent.shipping_amount,
        currency=intent.currency,
        status=OrderState.PROCESSING,
        payment_status="paid",
        shipping_address=intent.shipping_address,
        paid_at=now,
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def _insert_line_items(order: Order, intent: CheckoutIntent, db: Session) -> List[OrderLineItem]:
    # Payout and commission are copied from the event, never recomputed
    items = [
        OrderLineItem(
            order_id=order.id,
            product_id=line.product_id,
            seller_id=line.seller_id,
            quantity=line.quantity,
            unit_price=line.unit_price,
            seller_payout_amount=line.seller_payout_amount,
            platform_commission=line.platform_commission,
            commission_rate=line.commission_rate,
            payout_status="pending",
        )
        for line in intent.line_items
    ]
    db.add_all(items)
    db.commit()
    return items


def _delete_order_header(order_id: int, db: Session) -> None:
    db.query(OrderLineItem).filter(OrderLineItem.order_id == order_id).delete(synchronize_session=False)
    db.query(Order).filter(Order.id == order_id).delete(synchronize_session=False)
    db.commit()


def _remove_orphaned_header(order: Order, db: Session) -> bool:
    """Delete a header left without line items by a failed compensation

    Only headers older than ``ORPHAN_HEADER_GRACE_SECONDS`` qualify; a younger
    one may belong to a delivery that is still writing its line items.
    Returns True when the header was removed.
    """
    order_id = order.id
    txn_id = order.external_transaction_id
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=settings.ORPHAN_HEADER_GRACE_SECONDS)
    has_items = db.query(OrderLineItem.id).filter(OrderLineItem.order_id == order_id).exists()
    try:
        deleted = (
            db.query(Order)
            .filter(Order.id == order_id, Order.created_at <= cutoff, ~has_items)
            .delete(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    if deleted:
        db.expunge(order)
        logger.warning(f"Removed orphaned order header {order_id} (transaction {txn_id})")
    return bool(deleted)


def _run_compensations(compensations: List[Callable[[], None]], db: Session) -> List[str]:
    """Undo completed steps in reverse order; returns the errors of steps that could not be undone"""
    errors = []
    for undo in reversed(compensations):
        try:
            undo()
        except SQLAlchemyError as e:
            db.rollback()
            errors.append(str(e))
            logger.critical(f"Compensation step {getattr(undo, '__name__', undo)} failed: {e}", exc_info=True)
    return errors


def materialize_order(intent: CheckoutIntent, db: Session) -> MaterializationResult:
    """Create the order header and its line items for a completed checkout, at most once

    The unique constraint on ``external_transaction_id`` is the idempotency
    gate: the preceding lookup is only a shortcut for plain redeliveries, and
    losing the insert race is reported as an existing order, not an error.
    A stale header without line items is removed and written again.

    Raises:
        PartialWriteFailure: line items could not be written; the header has
            been deleted again before this is raised.
        SQLAlchemyError: the header itself could not be written for a reason
            other than a duplicate.
    """
    txn_id = intent.external_transaction_id

    existing = get_order_by_transaction_id(txn_id, db)
    if existing is not None and not existing.line_items and _remove_orphaned_header(existing, db):
        existing = None
    if existing is not None:
        logger.info(f"Transaction {txn_id} already materialized as order {existing.id}, skipping")
        return MaterializationResult(order=existing, created=False)

    compensations: List[Callable[[], None]] = []

    # Step 1: header (the insert is where duplicates are actually stopped)
    try:
        order = _insert_order_header(intent, db)
    except IntegrityError:
        db.rollback()
        existing = get_order_by_transaction_id(txn_id, db)
        if existing is not None:
            logger.info(f"Lost insert race for transaction {txn_id}; order {existing.id} already exists")
            return MaterializationResult(order=existing, created=False)
        raise

    order_id = order.id

    def undo_header():
        _delete_order_header(order_id, db)

    compensations.append(undo_header)

    # Step 2: line items
    try:
        _insert_line_items(order, intent, db)
    except Exception as e:
        db.rollback()
        logger.error(f"Line item insert failed for order {order_id} (transaction {txn_id}): {e}", exc_info=True)
        undo_errors = _run_compensations(compensations, db)
        message = f"Line item insert failed for transaction {txn_id}: {e}"
        if undo_errors:
            message += f"; header {order_id} could not be removed: {'; '.join(undo_errors)}"
        raise PartialWriteFailure(message) from e

    db.refresh(order)
    orders_materialized_counter.inc()
    logger.info(
        f"Materialized order {order.id} for transaction {txn_id}: "
        f"{len(order.line_items)} line item(s), total {order.total_amount} {order.currency}"
    )
    return MaterializationResult(order=order, created=True)
