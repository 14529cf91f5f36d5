"""Order lifecycle state machine

Flow:
    created -> paid -> processing -> shipped -> delivered
    cancelled is reachable from every state before delivered.

Materialized orders start at processing (payment already captured). Payment
events only ever drive the pre-fulfillment edges; shipping and delivery are
set by seller/admin tooling through the same ``transition_order`` check.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from marketplace.core.exceptions import InvalidLifecycleTransition
from marketplace.core.metrics import invalid_transitions_counter
from marketplace.models.order import Order

logger = logging.getLogger(__name__)


class OrderState:
    CREATED = "created"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


STATE_TRANSITIONS = {
    OrderState.CREATED: [OrderState.PAID, OrderState.CANCELLED],
    OrderState.PAID: [OrderState.PROCESSING, OrderState.CANCELLED],
    OrderState.PROCESSING: [OrderState.SHIPPED, OrderState.CANCELLED],
    OrderState.SHIPPED: [OrderState.DELIVERED, OrderState.CANCELLED],
    OrderState.DELIVERED: [],  # Terminal state
    OrderState.CANCELLED: [],  # Terminal state
}


def can_transition(from_state: str, to_state: str) -> bool:
    """Check if a state transition is allowed"""
    return to_state in STATE_TRANSITIONS.get(from_state, [])


def is_terminal_state(state: str) -> bool:
    return state in STATE_TRANSITIONS and not STATE_TRANSITIONS[state]


def get_next_states(state: str) -> List[str]:
    """Get all possible next states from current state"""
    return list(STATE_TRANSITIONS.get(state, []))


def transition_order(order: Order, to_state: str, db: Session, payment_status: Optional[str] = None) -> Order:
    """Move an order to ``to_state`` if the state machine allows it

    The update is conditional on the status read here, so a concurrent writer
    that moved the order first makes this call fail instead of overwriting it.

    Raises:
        InvalidLifecycleTransition: not allowed from the current state; the row
            is left unchanged.
    """
    from_state = order.status
    if not can_transition(from_state, to_state):
        invalid_transitions_counter.inc()
        logger.warning(f"Rejected transition for order {order.id}: {from_state} -> {to_state}")
        raise InvalidLifecycleTransition(from_state, to_state, get_next_states(from_state))

    values = {"status": to_state, "updated_at": datetime.now(timezone.utc)}
    if payment_status is not None:
        values["payment_status"] = payment_status

    updated = (
        db.query(Order)
        .filter(Order.id == order.id, Order.status == from_state)
        .update(values, synchronize_session=False)
    )
    db.commit()
    db.refresh(order)

    if updated != 1:
        invalid_transitions_counter.inc()
        logger.warning(
            f"Order {order.id} changed concurrently ({from_state} -> {order.status}); "
            f"transition to {to_state} not applied"
        )
        raise InvalidLifecycleTransition(order.status, to_state, get_next_states(order.status))

    logger.info(f"Order {order.id} transitioned {from_state} -> {to_state}")
    return order


def handle_session_expired(order: Optional[Order], db: Session) -> str:
    """Apply a session-expired event; returns the outcome label"""
    if order is None:
        return "ignored"
    if order.payment_status == "paid":
        # A checkout that completed cannot expire; the event is stale
        logger.info(f"Ignoring session expiry for paid order {order.id}")
        return "ignored"
    transition_order(order, OrderState.CANCELLED, db, payment_status="failed")
    return "cancelled"


def handle_payment_failed(order: Optional[Order], db: Session) -> str:
    """Apply a payment-failed event; returns the outcome label"""
    if order is None:
        return "ignored"
    transition_order(order, OrderState.CANCELLED, db, payment_status="failed")
    return "cancelled"
