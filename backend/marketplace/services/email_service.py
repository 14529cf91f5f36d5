"""Email service - transactional email via Resend"""
import html
import logging
from typing import Optional

import resend

from marketplace.core.config import settings
from marketplace.models.order import Order

logger = logging.getLogger(__name__)


def validate_email_config() -> tuple[bool, str]:
    """
    Validate email service configuration.

    Returns:
        tuple: (is_valid, error_message)
    """
    if not settings.RESEND_API_KEY:
        return False, "RESEND_API_KEY is not set in environment variables"

    if not settings.FRONTEND_URL:
        return False, "FRONTEND_URL is not set in environment variables"

    return True, ""


def _send_email(to: str, subject: str, html_body: str) -> bool:
    """
    Internal helper function to send email via Resend API.

    Args:
        to: Recipient email address
        subject: Email subject
        html_body: HTML email content

    Returns:
        bool: True on success, False on failure
    """
    if not settings.RESEND_API_KEY:
        logger.warning("RESEND_API_KEY is not set; skipping email")
        return False

    try:
        resend.api_key = settings.RESEND_API_KEY

        response = resend.Emails.send(
            {
                "from": settings.RESEND_FROM_EMAIL,
                "to": to,
                "subject": subject,
                "html": html_body,
            }
        )

        # Resend returns dict with 'id' field on success; handle both dict and object responses
        email_id = None
        if isinstance(response, dict):
            email_id = response.get('id')
        elif hasattr(response, 'id'):
            email_id = response.id

        if email_id:
            logger.info(f"Email sent successfully to {to} (id: {email_id})")
            return True
        else:
            logger.error(f"Email send returned invalid response: {response} (type: {type(response)})")
            return False

    except Exception as exc:
        logger.error(f"Failed to send email to {to}: {exc}", exc_info=True)
        return False


def order_reference(order: Order) -> str:
    """Short human-facing order number"""
    return f"#{order.external_transaction_id[-8:].upper()}"


def build_order_confirmation_email(order: Order, buyer_name: Optional[str] = None) -> tuple[str, str]:
    """Build (subject, html) for the buyer's order confirmation"""
    reference = order_reference(order)
    currency = order.currency.upper()

    rows = "".join(
        f"""
        <tr>
          <td style="padding: 8px; border-bottom: 1px solid #eee;">{html.escape(item.product_id)}</td>
          <td style="padding: 8px; border-bottom: 1px solid #eee; text-align: center;">{item.quantity}</td>
          <td style="padding: 8px; border-bottom: 1px solid #eee; text-align: right;">{item.line_total:.2f} {currency}</td>
        </tr>"""
        for item in order.line_items
    )

    greeting = html.escape(buyer_name) if buyer_name else "there"
    orders_link = f"{settings.FRONTEND_URL}/orders"

    body = f"""
    <p>Hi {greeting},</p>
    <p>Thank you for your order! Your payment has been received and the sellers have been notified.</p>
    <p>Order number: <strong>{reference}</strong></p>
    <table style="width: 100%; border-collapse: collapse; margin: 20px 0;">
      <tr>
        <th style="text-align: left; padding: 8px;">Item</th>
        <th style="padding: 8px;">Qty</th>
        <th style="text-align: right; padding: 8px;">Amount</th>
      </tr>{rows}
    </table>
    <p>Shipping: {order.shipping_amount:.2f} {currency}</p>
    <p style="font-size: 16px;"><strong>Total: {order.total_amount:.2f} {currency}</strong></p>
    <p><a href="{orders_link}" target="_blank" rel="noopener noreferrer">View your orders</a></p>
    """

    return f"Order confirmed - {reference}", body


def send_order_confirmation_email(order: Order, to: str, buyer_name: Optional[str] = None) -> bool:
    """
    Send the buyer's order confirmation.

    Returns:
        bool: True on success, False on failure (never raises)
    """
    subject, body = build_order_confirmation_email(order, buyer_name)
    return _send_email(to, subject, body)
