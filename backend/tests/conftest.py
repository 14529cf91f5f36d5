"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import json
import os
import sys
import time
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional
from unittest.mock import Mock, patch

import pytest
import fakeredis
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Must be set before the application settings are imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from marketplace.main import app
from marketplace.core.config import settings
from marketplace.db.session import get_db, get_session_factory
from marketplace.models import Base
from marketplace.models.seller import Seller
from marketplace.models.user import User
from marketplace.db import redis as redis_module


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

WEBHOOK_SECRET = settings.STRIPE_WEBHOOK_SECRET

# Resend test email addresses - use these in ALL tests to avoid fake addresses
# See: https://resend.com/docs/dashboard/emails/send-test-emails
RESEND_TEST_DELIVERED = "delivered@resend.dev"


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    # Create all tables
    Base.metadata.create_all(bind=test_engine)

    # Create session
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def session_factory(db_session: Session) -> Callable[[], Session]:
    """Factory handing out extra sessions on the same test database"""
    return TestSessionLocal


@pytest.fixture(scope="function")
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, '_client', fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def client(db_session: Session, session_factory, mock_redis) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and mocked Redis

    Not entered as a context manager, so the lifespan (database init and the
    notification sweeper) does not run.
    """

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    try:
        yield TestClient(app)
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function", autouse=True)
def mock_email_service():
    """Mock email service (Resend) for every test so no real email is ever sent"""
    with patch('marketplace.services.email_service.resend') as mock_resend:
        mock_resend.Emails.send = Mock(return_value={"id": "email_test123"})
        yield mock_resend


@pytest.fixture(scope="function")
def buyer(db_session: Session) -> User:
    """Buyer account using Resend test email"""
    user = User(email=RESEND_TEST_DELIVERED, full_name="Test Buyer")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def _create_seller(db_session: Session, email: str, shop_name: str) -> Seller:
    owner = User(email=email, full_name=f"{shop_name} Owner")
    db_session.add(owner)
    db_session.commit()
    seller = Seller(user_id=owner.id, shop_name=shop_name)
    db_session.add(seller)
    db_session.commit()
    db_session.refresh(seller)
    return seller


@pytest.fixture(scope="function")
def seller_a(db_session: Session) -> Seller:
    return _create_seller(db_session, "delivered+seller-a@resend.dev", "Shop A")


@pytest.fixture(scope="function")
def seller_b(db_session: Session) -> Seller:
    return _create_seller(db_session, "delivered+seller-b@resend.dev", "Shop B")


def cart_line(
    seller_id: int,
    product_id: Any = "prod_1",
    quantity: int = 1,
    unit_price: str = "100.00",
    payout: str = "85.00",
    commission: str = "15.00",
    rate: str = "15.00",
) -> Dict[str, Any]:
    return {
        "product_id": product_id,
        "seller_id": seller_id,
        "quantity": quantity,
        "unit_price": unit_price,
        "seller_payout_amount": payout,
        "platform_commission": commission,
        "commission_rate": rate,
    }


def checkout_completed_event(
    buyer_id: Any,
    lines: List[Dict[str, Any]],
    amount_total: int,
    session_id: str = "cs_test_a1b2c3d4e5f6g7h8",
    event_id: str = "evt_completed_1",
    shipping_amount: Optional[str] = None,
    payment_intent: str = "pi_test_123",
    metadata_overrides: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Stripe checkout.session.completed event as delivered to the endpoint"""
    metadata = {
        "buyer_id": str(buyer_id),
        "cart_items": json.dumps(lines),
        "shipping_address": json.dumps({"line1": "1 Market St", "city": "Berlin", "country": "DE"}),
    }
    if shipping_amount is not None:
        metadata["shipping_amount"] = shipping_amount
    if metadata_overrides:
        for key, value in metadata_overrides.items():
            if value is None:
                metadata.pop(key, None)
            else:
                metadata[key] = value
    return {
        "id": event_id,
        "object": "event",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "amount_total": amount_total,
                "currency": "eur",
                "payment_intent": payment_intent,
                "payment_status": "paid",
                "metadata": metadata,
            }
        },
    }


def stripe_event(event_type: str, data_object: Dict[str, Any], event_id: str = "evt_test_1") -> Dict[str, Any]:
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": data_object}}


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a stripe-signature header the way Stripe does"""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def signed_request(event: Dict[str, Any], secret: str = WEBHOOK_SECRET):
    """(payload, signature header) pair for an event"""
    payload = json.dumps(event).encode("utf-8")
    return payload, sign_payload(payload, secret)

