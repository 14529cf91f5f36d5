"""Background task tests"""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest

from conftest import cart_line, checkout_completed_event
from marketplace.main import app, lifespan
from marketplace.models.order import Order
from marketplace.models.seller_notification import SellerNotification
from marketplace.services.checkout_metadata import extract_checkout_intent, parse_payment_event
from marketplace.services.order_service import materialize_order
from marketplace.tasks.notification_sweeper import find_unnotified_orders, sweep_unnotified_orders


def _materialize(db_session, buyer, seller, session_id="cs_test_sweep_0001"):
    event = checkout_completed_event(buyer.id, [cart_line(seller.id)], amount_total=10000, session_id=session_id)
    return materialize_order(extract_checkout_intent(parse_payment_event(event)), db_session).order


@pytest.mark.high
class TestNotificationSweeper:
    """Test the notification outbox sweeper"""

    def test_overdue_orders_are_dispatched(self, db_session, session_factory, buyer, seller_a, mock_email_service):
        """Test an order left un-notified past the grace period gets its notifications"""
        order = _materialize(db_session, buyer, seller_a)
        later = datetime.now(timezone.utc) + timedelta(hours=1)

        dispatched = sweep_unnotified_orders(session_factory, now=later)

        assert dispatched == 1
        db_session.expire_all()
        assert db_session.get(Order, order.id).notified_at is not None
        assert db_session.query(SellerNotification).count() == 1
        assert mock_email_service.Emails.send.call_count == 1

        # Nothing left to do on the next pass
        assert sweep_unnotified_orders(session_factory, now=later) == 0

    def test_recent_orders_are_left_to_the_request(self, db_session, session_factory, buyer, seller_a):
        """Test orders inside the grace period are not swept"""
        _materialize(db_session, buyer, seller_a)

        assert sweep_unnotified_orders(session_factory) == 0
        assert db_session.query(SellerNotification).count() == 0

    def test_headers_without_line_items_do_not_fill_the_batch(self, db_session, buyer, seller_a):
        """Test item-less headers are skipped so newer complete orders still get picked up"""
        db_session.add(Order(
            external_transaction_id="cs_test_orphan_0001",
            buyer_id=buyer.id,
            total_amount=Decimal("100.00"),
            shipping_amount=Decimal("0.00"),
            currency="eur",
            status="processing",
            payment_status="paid",
            created_at=datetime.now(timezone.utc) - timedelta(hours=2),
        ))
        db_session.commit()
        order = _materialize(db_session, buyer, seller_a)
        cutoff = datetime.now(timezone.utc) + timedelta(minutes=5)

        assert find_unnotified_orders(db_session, cutoff, limit=1) == [order.id]

    def test_find_unnotified_orders_respects_limit(self, db_session, buyer, seller_a):
        """Test the batch size caps how many orders one pass picks up"""
        for i in range(3):
            _materialize(db_session, buyer, seller_a, session_id=f"cs_test_sweep_000{i}")
        cutoff = datetime.now(timezone.utc) + timedelta(minutes=5)

        assert len(find_unnotified_orders(db_session, cutoff, limit=2)) == 2
        assert len(find_unnotified_orders(db_session, cutoff, limit=10)) == 3


@pytest.mark.medium
class TestSweeperLifecycle:
    """Test the sweeper is started and stopped with the application"""

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_sweeper_to_stop(self):
        """Test shutdown cancels the sweeper and waits for it to finish"""
        stopped = []

        async def fake_sweeper():
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                await asyncio.sleep(0)
                stopped.append(True)
                raise

        with patch("marketplace.main.initialize_otel", return_value=False), \
                patch("marketplace.main.init_db"), \
                patch("marketplace.main.get_redis_client"), \
                patch("marketplace.main.instrument_sqlalchemy"), \
                patch("marketplace.main.validate_email_config", return_value=(True, "")), \
                patch("marketplace.tasks.notification_sweeper.notification_sweeper_task", fake_sweeper):
            async with lifespan(app):
                # Let the sweeper start before shutdown
                await asyncio.sleep(0)

        assert stopped == [True]
