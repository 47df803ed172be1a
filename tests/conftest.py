"""Shared test fixtures for the storefront test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, fake Stripe keys)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- stripe_headers: builds a valid Stripe-Signature header for a raw body
- make_order: inserts an Order (and optional items) directly
"""

import hashlib
import hmac
import time

import pytest

from storefront import create_app
from storefront.extensions import db as _db
from storefront.models.order import Order, OrderItem

WEBHOOK_SECRET = "whsec_test_fake"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Stripe-Signature header value for `payload` (str)."""
    timestamp = int(timestamp if timestamp is not None else time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def stripe_headers():
    """Return a function building request headers for a signed webhook body."""

    def _headers(payload, **kwargs):
        return {"Stripe-Signature": sign_payload(payload, **kwargs)}

    return _headers


@pytest.fixture
def make_order(db_session):
    """Insert an Order directly, bypassing the webhook."""

    def _make(session_id, email=None, customer_id=None, created_at=None, items=()):
        order = Order(
            stripe_checkout_session_id=session_id,
            customer_email=email,
            stripe_customer_id=customer_id,
            currency="usd",
            amount_total=1200,
            status="paid",
        )
        if created_at is not None:
            order.created_at = created_at
        db_session.add(order)
        db_session.flush()
        for price_id, quantity in items:
            db_session.add(OrderItem(
                order_id=order.id,
                stripe_price_id=price_id,
                product_slug="lemon-yuzu",
                purchase_type="one-time",
                quantity=quantity,
            ))
        db_session.commit()
        return order

    return _make
