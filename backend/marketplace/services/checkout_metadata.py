"""Turn verified Stripe events into typed pipeline events and checkout intents"""
import json
import logging
from typing import Any, Dict, Optional

from pydantic import TypeAdapter, ValidationError

from marketplace.core.config import settings
from marketplace.core.exceptions import MissingMetadata
from marketplace.schemas.payment_events import (
    PaymentEvent, SessionCompletedEvent, CheckoutIntent,
    SESSION_COMPLETED, SESSION_EXPIRED, PAYMENT_SUCCEEDED, PAYMENT_FAILED,
)
from marketplace.utils.money import from_minor_units

logger = logging.getLogger(__name__)

# Stripe event type -> pipeline event type
STRIPE_EVENT_TYPES = {
    "checkout.session.completed": SESSION_COMPLETED,
    "checkout.session.expired": SESSION_EXPIRED,
    "payment_intent.succeeded": PAYMENT_SUCCEEDED,
    "payment_intent.payment_failed": PAYMENT_FAILED,
}

_payment_event_adapter = TypeAdapter(PaymentEvent)


def _describe_validation_error(error: ValidationError) -> tuple[str, Optional[str]]:
    """Flatten a pydantic error into (message, first offending field)"""
    parts = []
    first_field = None
    for err in error.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        if first_field is None and loc:
            first_field = loc
        parts.append(f"{loc or '<root>'}: {err.get('msg')}")
    return "; ".join(parts), first_field


def parse_payment_event(event: Dict[str, Any]) -> Optional[PaymentEvent]:
    """Map a Stripe event dict onto one of the recognized pipeline event variants

    Returns None for event types the pipeline deliberately ignores.

    Raises:
        MissingMetadata: the type is recognized but the event does not carry the
            fields that type requires.
    """
    pipeline_type = STRIPE_EVENT_TYPES.get(event.get("type"))
    if pipeline_type is None:
        return None

    data_object = (event.get("data") or {}).get("object")
    if not isinstance(data_object, dict):
        raise MissingMetadata("Event has no data.object", field="data.object")

    candidate: Dict[str, Any] = {"event_type": pipeline_type, "event_id": event.get("id")}
    if pipeline_type == SESSION_COMPLETED:
        candidate["session"] = data_object
    elif pipeline_type == SESSION_EXPIRED:
        candidate["external_transaction_id"] = data_object.get("id")
    elif pipeline_type == PAYMENT_SUCCEEDED:
        candidate["payment_intent_id"] = data_object.get("id")
        candidate["amount"] = data_object.get("amount_received")
    else:
        candidate["payment_intent_id"] = data_object.get("id")
        candidate["failure_message"] = (data_object.get("last_payment_error") or {}).get("message")

    try:
        return _payment_event_adapter.validate_python(candidate)
    except ValidationError as e:
        message, field = _describe_validation_error(e)
        raise MissingMetadata(f"Malformed {pipeline_type} event: {message}", field=field) from e


def _load_json_field(metadata: Dict[str, Any], key: str) -> Any:
    """Stripe metadata values are strings; JSON-encoded fields are decoded here"""
    if key not in metadata or metadata[key] in (None, ""):
        raise MissingMetadata(f"Checkout metadata is missing '{key}'", field=key)
    value = metadata[key]
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError) as e:
        raise MissingMetadata(f"Checkout metadata '{key}' is not valid JSON", field=key) from e


def extract_checkout_intent(event: SessionCompletedEvent) -> CheckoutIntent:
    """Extract buyer, cart lines, shipping and total from a completed checkout session

    Amounts are taken from the event as-is (the event is the record of what was
    charged); they are only checked for internal consistency.

    Raises:
        MissingMetadata: a required field is absent, malformed, or the amounts do
            not add up. Redelivery cannot fix this, so callers record and acknowledge.
    """
    session = event.session
    metadata = session.get("metadata") or {}

    if not session.get("id"):
        raise MissingMetadata("Checkout session has no id", field="id")
    if "buyer_id" not in metadata:
        raise MissingMetadata("Checkout metadata is missing 'buyer_id'", field="buyer_id")
    if session.get("amount_total") is None:
        raise MissingMetadata("Checkout session has no amount_total", field="amount_total")

    currency = session.get("currency") or settings.DEFAULT_CURRENCY
    try:
        total_amount = from_minor_units(session["amount_total"], currency)
    except ValueError as e:
        raise MissingMetadata(str(e), field="amount_total") from e

    payment_intent = session.get("payment_intent")
    if isinstance(payment_intent, dict):
        payment_intent = payment_intent.get("id")

    raw_intent = {
        "external_transaction_id": session["id"],
        "payment_intent_id": payment_intent,
        "buyer_id": metadata["buyer_id"],
        "line_items": _load_json_field(metadata, "cart_items"),
        "shipping_address": _load_json_field(metadata, "shipping_address"),
        "shipping_amount": metadata.get("shipping_amount") or "0",
        "total_amount": total_amount,
        "currency": currency,
    }

    try:
        intent = CheckoutIntent.model_validate(raw_intent)
    except ValidationError as e:
        message, field = _describe_validation_error(e)
        raise MissingMetadata(f"Invalid checkout metadata: {message}", field=field) from e

    logger.debug(
        f"Extracted checkout {intent.external_transaction_id}: buyer {intent.buyer_id}, "
        f"{len(intent.line_items)} line(s), total {intent.total_amount} {intent.currency}"
    )
    return intent
