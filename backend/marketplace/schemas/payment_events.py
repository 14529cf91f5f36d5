"""Pydantic schemas for inbound payment events

One model per recognized event type, discriminated on ``event_type``. Anything
that does not fit one of these shapes is rejected at extraction time.
"""
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from marketplace.utils.money import to_money

SESSION_COMPLETED = "session-completed"
SESSION_EXPIRED = "session-expired"
PAYMENT_SUCCEEDED = "payment-succeeded"
PAYMENT_FAILED = "payment-failed"


class CartLineItem(BaseModel):
    """A single cart line as priced at checkout time"""
    model_config = ConfigDict(extra="ignore")

    product_id: str = Field(min_length=1, max_length=64)
    seller_id: int = Field(gt=0)
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)
    seller_payout_amount: Decimal = Field(ge=0)
    platform_commission: Decimal = Field(ge=0)
    commission_rate: Decimal = Field(ge=0, le=100)

    @field_validator("unit_price", "seller_payout_amount", "platform_commission", mode="before")
    @classmethod
    def quantize_amounts(cls, v):
        return to_money(v)

    @field_validator("product_id", mode="before")
    @classmethod
    def stringify_product_id(cls, v):
        # Catalog ids arrive as ints or UUID strings depending on the storefront
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @model_validator(mode="after")
    def check_split(self):
        if self.seller_payout_amount + self.platform_commission != self.line_total:
            raise ValueError(
                f"payout {self.seller_payout_amount} + commission {self.platform_commission} "
                f"does not equal line total {self.line_total}"
            )
        return self


class CheckoutIntent(BaseModel):
    """Typed result of metadata extraction for a completed checkout"""

    external_transaction_id: str = Field(min_length=1)
    payment_intent_id: Optional[str] = None
    buyer_id: int = Field(gt=0)
    line_items: List[CartLineItem] = Field(min_length=1)
    shipping_address: Dict[str, Any]
    shipping_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    total_amount: Decimal = Field(ge=0)
    currency: str = Field(min_length=3, max_length=3)

    @field_validator("shipping_amount", "total_amount", mode="before")
    @classmethod
    def quantize_amounts(cls, v):
        return to_money(v)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v):
        return v.lower()

    @property
    def subtotal(self) -> Decimal:
        return sum((item.line_total for item in self.line_items), Decimal("0.00"))

    @model_validator(mode="after")
    def check_total(self):
        if self.subtotal + self.shipping_amount != self.total_amount:
            raise ValueError(
                f"line items {self.subtotal} + shipping {self.shipping_amount} "
                f"does not equal total {self.total_amount}"
            )
        return self


class SessionCompletedEvent(BaseModel):
    event_type: Literal["session-completed"]
    event_id: str
    session: Dict[str, Any]

    @property
    def external_transaction_id(self) -> Optional[str]:
        return self.session.get("id")


class SessionExpiredEvent(BaseModel):
    event_type: Literal["session-expired"]
    event_id: str
    external_transaction_id: str = Field(min_length=1)


class PaymentSucceededEvent(BaseModel):
    event_type: Literal["payment-succeeded"]
    event_id: str
    payment_intent_id: str = Field(min_length=1)
    amount: Optional[int] = None


class PaymentFailedEvent(BaseModel):
    event_type: Literal["payment-failed"]
    event_id: str
    payment_intent_id: str = Field(min_length=1)
    failure_message: Optional[str] = None


PaymentEvent = Annotated[
    Union[SessionCompletedEvent, SessionExpiredEvent, PaymentSucceededEvent, PaymentFailedEvent],
    Field(discriminator="event_type"),
]
