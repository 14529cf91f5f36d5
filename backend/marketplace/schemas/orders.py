"""Pydantic schemas for order responses"""
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, List, Optional


class OrderLineItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: str
    seller_id: int
    quantity: int
    unit_price: Decimal
    seller_payout_amount: Decimal
    platform_commission: Decimal
    commission_rate: Decimal
    payout_status: str


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    external_transaction_id: str
    buyer_id: int
    total_amount: Decimal
    shipping_amount: Decimal
    currency: str
    status: str
    payment_status: str
    shipping_address: Optional[Dict[str, Any]] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
    line_items: List[OrderLineItemResponse]


class OrderLookupResponse(BaseModel):
    status: str  # 'found' or 'not_found'
    external_transaction_id: str
    order: Optional[OrderResponse] = None


class OrderTransitionsResponse(BaseModel):
    order_id: int
    current_state: str
    available_transitions: List[str]
