"""Stripe webhook verification"""
import json
import logging
from typing import Any, Dict, Optional

import stripe

from marketplace.core.exceptions import SignatureInvalid

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")


def verify_payment_event(payload: bytes, sig_header: Optional[str], webhook_secret: str) -> Dict[str, Any]:
    """Authenticate a Stripe webhook delivery and return the event as a plain dict

    Args:
        payload: Raw request body as bytes (must not be parsed by middleware)
        sig_header: Value of the ``stripe-signature`` header
        webhook_secret: Endpoint signing secret

    Raises:
        SignatureInvalid: missing header or secret, bad signature, or a body
            that is not a JSON event. Nothing has been written when this is raised.
    """
    if not webhook_secret:
        logger.error("Webhook secret not configured")
        raise SignatureInvalid("Webhook secret not configured")

    if not sig_header:
        security_logger.warning("Payment event received without stripe-signature header")
        raise SignatureInvalid("Missing stripe-signature header")

    try:
        stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise SignatureInvalid("Invalid payload") from e
    except stripe.SignatureVerificationError as e:
        security_logger.warning(f"Invalid webhook signature: {e}")
        raise SignatureInvalid("Invalid signature") from e

    # The signature covers the exact bytes, so decode those rather than the StripeObject
    event = json.loads(payload)
    if not isinstance(event, dict) or not event.get("type"):
        raise SignatureInvalid("Payload is not a Stripe event")
    return event
