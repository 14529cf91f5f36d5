"""API endpoint tests"""
from decimal import Decimal
from unittest.mock import patch

import pytest

from conftest import cart_line, checkout_completed_event, signed_request, stripe_event
from marketplace.core.config import settings
from marketplace.core.exceptions import FailureRecorderUnavailable
from marketplace.models.failed_event import FailedEvent
from marketplace.models.order import Order
from marketplace.models.seller_notification import SellerNotification

TXN_ID = "cs_test_a1b2c3d4e5f6g7h8"


def _post_event(client, event, secret=None):
    payload, sig = signed_request(event, secret) if secret else signed_request(event)
    return client.post(
        "/payment-events",
        content=payload,
        headers={"stripe-signature": sig, "content-type": "application/json"},
    )


@pytest.mark.critical
class TestPaymentEventEndpoint:
    """Test POST /payment-events"""

    def test_completed_checkout_is_materialized_and_sellers_notified(
        self, client, db_session, buyer, seller_a, mock_email_service
    ):
        """Test a signed checkout event returns 200 and the fan-out runs after the response"""
        event = checkout_completed_event(buyer.id, [cart_line(seller_a.id)], amount_total=10000)

        response = _post_event(client, event)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "materialized"

        db_session.expire_all()
        order = db_session.query(Order).one()
        assert body["order_id"] == order.id
        assert order.notified_at is not None
        notification = db_session.query(SellerNotification).one()
        assert notification.recipient_id == seller_a.user_id
        assert mock_email_service.Emails.send.call_count == 1

    def test_redelivery_is_acknowledged_as_duplicate(self, client, db_session, buyer, seller_a, mock_email_service):
        """Test the gateway redelivering an event gets 200 without a second order or email"""
        event = checkout_completed_event(buyer.id, [cart_line(seller_a.id)], amount_total=10000)

        first = _post_event(client, event)
        second = _post_event(client, event)

        assert first.json()["status"] == "materialized"
        assert second.status_code == 200
        assert second.json()["status"] == "duplicate"
        assert db_session.query(Order).count() == 1
        assert db_session.query(SellerNotification).count() == 1
        assert mock_email_service.Emails.send.call_count == 1

    def test_invalid_signature_returns_400(self, client, db_session, buyer, seller_a):
        """Test a bad signature is rejected with 400 and nothing is written"""
        event = checkout_completed_event(buyer.id, [cart_line(seller_a.id)], amount_total=10000)

        response = _post_event(client, event, secret="whsec_wrong")

        assert response.status_code == 400
        assert db_session.query(Order).count() == 0
        assert db_session.query(FailedEvent).count() == 0

    def test_missing_signature_header_returns_400(self, client, db_session):
        """Test a delivery without stripe-signature is rejected"""
        response = client.post("/payment-events", content=b"{}", headers={"content-type": "application/json"})
        assert response.status_code == 400

    def test_missing_metadata_is_recorded_and_acknowledged(self, client, db_session):
        """Test malformed metadata is acknowledged with 200 and lands in the failed events table"""
        event = checkout_completed_event(7, [cart_line(3)], amount_total=10000, metadata_overrides={"cart_items": None})

        first = _post_event(client, event)
        second = _post_event(client, event)

        assert first.status_code == 200
        assert first.json()["status"] == "recorded_failure"
        assert second.json()["status"] == "recorded_failure"
        failed = db_session.query(FailedEvent).one()
        assert failed.external_transaction_id == TXN_ID
        assert failed.retry_count == 1
        assert db_session.query(Order).count() == 0

    def test_failure_recorder_outage_returns_500(self, client, db_session):
        """Test the gateway is told to retry when the failure cannot be recorded"""
        event = checkout_completed_event(7, [cart_line(3)], amount_total=10000, metadata_overrides={"buyer_id": None})

        with patch(
            "marketplace.services.payment_event_service.record_failed_event",
            side_effect=FailureRecorderUnavailable("database unavailable"),
        ):
            response = _post_event(client, event)

        assert response.status_code == 500

    def test_lifecycle_events(self, client, db_session, buyer, seller_a):
        """Test payment failure cancels, a repeat is rejected, and other types are acknowledged"""
        _post_event(client, checkout_completed_event(buyer.id, [cart_line(seller_a.id)], amount_total=10000))

        failed = stripe_event("payment_intent.payment_failed", {"id": "pi_test_123"}, event_id="evt_pf")
        assert _post_event(client, failed).json()["status"] == "cancelled"
        assert _post_event(client, failed).json()["status"] == "rejected_transition"

        succeeded = stripe_event("payment_intent.succeeded", {"id": "pi_other", "amount_received": 100})
        assert _post_event(client, succeeded).json()["status"] == "informational"

        unknown = stripe_event("customer.created", {"id": "cus_1"})
        assert _post_event(client, unknown).json()["status"] == "ignored"

        db_session.expire_all()
        assert db_session.query(Order).one().status == "cancelled"


@pytest.mark.critical
class TestOrderLookupEndpoint:
    """Test GET /orders"""

    def test_not_found_is_not_an_error(self, client, db_session):
        """Test an unknown transaction returns 200 with status not_found"""
        response = client.get("/orders", params={"external_transaction_id": "cs_unknown"})

        assert response.status_code == 200
        assert response.json()["status"] == "not_found"
        assert response.json()["order"] is None

    def test_found_after_materialization(self, client, db_session, buyer, seller_a):
        """Test the order is returned with its line items once materialized"""
        _post_event(client, checkout_completed_event(buyer.id, [cart_line(seller_a.id)], amount_total=10000))

        response = client.get("/orders", params={"external_transaction_id": TXN_ID})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "found"
        assert body["order"]["external_transaction_id"] == TXN_ID
        assert body["order"]["status"] == "processing"
        assert Decimal(body["order"]["total_amount"]) == Decimal("100.00")
        assert len(body["order"]["line_items"]) == 1
        assert body["order"]["line_items"][0]["payout_status"] == "pending"

    def test_header_without_line_items_is_not_found(self, client, db_session, buyer):
        """Test a half-written order is never reported as found"""
        db_session.add(Order(
            external_transaction_id=TXN_ID,
            buyer_id=buyer.id,
            total_amount=Decimal("100.00"),
            shipping_amount=Decimal("0.00"),
            currency="eur",
            status="processing",
            payment_status="paid",
        ))
        db_session.commit()

        response = client.get("/orders", params={"external_transaction_id": TXN_ID})

        assert response.json()["status"] == "not_found"

    def test_missing_query_parameter(self, client):
        """Test the transaction id is required"""
        assert client.get("/orders").status_code == 422

    def test_lookup_is_rate_limited(self, client, db_session):
        """Test a client polling too fast gets 429"""
        with patch.object(settings, "RATE_LIMIT_REQUESTS", 2):
            codes = [
                client.get("/orders", params={"external_transaction_id": "cs_x"}).status_code
                for _ in range(3)
            ]

        assert codes == [200, 200, 429]


@pytest.mark.high
class TestOrderTransitionsEndpoint:
    """Test GET /orders/{id}/transitions"""

    def test_available_transitions(self, client, db_session, buyer, seller_a):
        """Test the current state and its allowed next states are returned"""
        body = _post_event(client, checkout_completed_event(buyer.id, [cart_line(seller_a.id)], amount_total=10000)).json()

        response = client.get(f"/orders/{body['order_id']}/transitions")

        assert response.status_code == 200
        assert response.json() == {
            "order_id": body["order_id"],
            "current_state": "processing",
            "available_transitions": ["shipped", "cancelled"],
        }

    def test_unknown_order_returns_404(self, client, db_session):
        """Test a missing order is a 404"""
        assert client.get("/orders/999/transitions").status_code == 404


@pytest.mark.medium
class TestMonitoringEndpoints:
    """Test health and metrics endpoints"""

    def test_health(self, client):
        """Test the health endpoint"""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_metrics_exposes_pipeline_counters(self, client, db_session, buyer, seller_a):
        """Test Prometheus output includes the pipeline metrics"""
        _post_event(client, checkout_completed_event(buyer.id, [cart_line(seller_a.id)], amount_total=10000))

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "marketplace_payment_events_total" in response.text
        assert "marketplace_orders_materialized_total" in response.text
        assert "marketplace_failed_events_pending" in response.text
