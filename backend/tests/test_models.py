"""Database model and helper tests"""
import logging
from unittest.mock import patch

import pytest
from decimal import Decimal
from sqlalchemy.exc import IntegrityError

from marketplace.core.config import settings
from marketplace.core.logging import setup_logging
from marketplace.models.failed_event import FailedEvent
from marketplace.models.order import Order, OrderLineItem
from marketplace.models.seller_notification import SellerNotification
from marketplace.utils.money import to_money, from_minor_units


def _order(buyer_id: int, txn: str = "cs_test_model_1") -> Order:
    return Order(
        external_transaction_id=txn,
        buyer_id=buyer_id,
        total_amount=Decimal("100.00"),
        shipping_amount=Decimal("0.00"),
        currency="eur",
        status="processing",
        payment_status="paid",
    )


@pytest.mark.critical
class TestOrderModel:
    """Test Order and OrderLineItem models"""

    def test_external_transaction_id_is_unique(self, db_session, buyer):
        """Test a second order for the same transaction is rejected by the database"""
        db_session.add(_order(buyer.id))
        db_session.commit()

        db_session.add(_order(buyer.id))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

        assert db_session.query(Order).count() == 1

    def test_order_defaults(self, db_session, buyer):
        """Test new orders start un-notified with timestamps set"""
        order = _order(buyer.id)
        db_session.add(order)
        db_session.commit()
        db_session.refresh(order)

        assert order.notified_at is None
        assert order.created_at is not None
        assert order.updated_at is not None

    def test_line_item_total_and_defaults(self, db_session, buyer, seller_a):
        """Test line_total and the pending payout status default"""
        order = _order(buyer.id)
        db_session.add(order)
        db_session.commit()

        item = OrderLineItem(
            order_id=order.id,
            product_id="prod_1",
            seller_id=seller_a.id,
            quantity=3,
            unit_price=Decimal("19.99"),
            seller_payout_amount=Decimal("50.97"),
            platform_commission=Decimal("9.00"),
            commission_rate=Decimal("15.00"),
        )
        db_session.add(item)
        db_session.commit()
        db_session.refresh(item)

        assert item.payout_status == "pending"
        assert item.line_total == Decimal("59.97")
        assert order.line_items[0].id == item.id


@pytest.mark.high
class TestNotificationAndFailureModels:
    """Test SellerNotification and FailedEvent models"""

    def test_one_notification_per_seller_per_order(self, db_session, buyer, seller_a):
        """Test the (order, seller) pair is unique"""
        order = _order(buyer.id)
        db_session.add(order)
        db_session.commit()

        def notification():
            return SellerNotification(
                recipient_id=seller_a.user_id,
                order_id=order.id,
                seller_id=seller_a.id,
                title="New order received",
                message="Order #1",
                data={"order_id": order.id, "item_count": 1, "amount": "100.00"},
            )

        db_session.add(notification())
        db_session.commit()
        db_session.add(notification())
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

        stored = db_session.query(SellerNotification).one()
        assert stored.type == "new_order"
        assert stored.is_read is False
        assert stored.data["item_count"] == 1

    def test_failed_event_defaults(self, db_session):
        """Test failed events start pending with no retries"""
        failed = FailedEvent(error_kind="missing_metadata", error_message="no buyer", raw_payload={"id": "evt_1"})
        db_session.add(failed)
        db_session.commit()
        db_session.refresh(failed)

        assert failed.status == "pending"
        assert failed.retry_count == 0
        assert failed.raw_payload == {"id": "evt_1"}


@pytest.mark.medium
class TestMoneyHelpers:
    """Test money coercion helpers"""

    def test_to_money_quantizes(self):
        """Test values are rounded half-up to cents"""
        assert to_money("10") == Decimal("10.00")
        assert to_money(0.1) == Decimal("0.10")
        assert to_money("2.005") == Decimal("2.01")

    @pytest.mark.parametrize("value", [None, True, "abc", "NaN", "Infinity"])
    def test_to_money_rejects_non_amounts(self, value):
        """Test non-numeric and non-finite values are rejected"""
        with pytest.raises(ValueError):
            to_money(value)

    def test_from_minor_units(self):
        """Test cents are converted to a two-place amount"""
        assert from_minor_units(10000) == Decimal("100.00")
        assert from_minor_units(1999) == Decimal("19.99")
        with pytest.raises(ValueError):
            from_minor_units("10000")

    def test_zero_decimal_currencies_are_whole_units(self):
        """Test JPY and KRW amounts are not divided by 100"""
        assert from_minor_units(1500, "jpy") == Decimal("1500.00")
        assert from_minor_units(1500, "KRW") == Decimal("1500.00")
        assert from_minor_units(1500, "eur") == Decimal("15.00")


@pytest.mark.medium
class TestLoggingSetup:
    """Test application logging configuration"""

    def test_payment_loggers_stay_visible_and_libraries_are_quiet(self):
        """Test a raised LOG_LEVEL still keeps payment and security events at INFO"""
        with patch.object(settings, "LOG_LEVEL", "error"):
            setup_logging()

        assert logging.getLogger().level == logging.ERROR
        assert logging.getLogger("payments").level == logging.INFO
        assert logging.getLogger("security").level == logging.INFO
        assert logging.getLogger("stripe").level == logging.WARNING
        assert logging.getLogger("urllib3").level == logging.WARNING

        setup_logging()
