"""Order lookup API routes"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from marketplace.core.security import require_rate_limit
from marketplace.db.session import get_db
from marketplace.models.order import Order
from marketplace.schemas.orders import OrderLookupResponse, OrderResponse, OrderTransitionsResponse
from marketplace.services.order_lifecycle import get_next_states
from marketplace.services.order_service import get_order_by_transaction_id

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=OrderLookupResponse)
def lookup_order(
    external_transaction_id: str = Query(..., min_length=1, max_length=255),
    _client: str = Depends(require_rate_limit),
    db: Session = Depends(get_db)
):
    """Find an order by checkout session id

    "not_found" is a normal answer while the payment event is still in flight.
    """
    order = get_order_by_transaction_id(external_transaction_id, db, require_items=True)
    if order is None:
        return OrderLookupResponse(status="not_found", external_transaction_id=external_transaction_id)
    return OrderLookupResponse(
        status="found",
        external_transaction_id=external_transaction_id,
        order=OrderResponse.model_validate(order),
    )


@router.get("/{order_id}/transitions", response_model=OrderTransitionsResponse)
def get_order_transitions(order_id: int, db: Session = Depends(get_db)):
    """Current state and the states the order may move to next"""
    order = db.get(Order, order_id)
    if order is None:
        raise HTTPException(404, "Order not found")
    return OrderTransitionsResponse(
        order_id=order.id,
        current_state=order.status,
        available_transitions=get_next_states(order.status),
    )
