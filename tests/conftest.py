import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")
# Read by the config class at import time
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_x")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_x")

import hashlib
import hmac
import itertools
import json
import time

import pytest
from menuqr import create_app
from menuqr.errors import BillingProviderError
from menuqr.extensions import db

DAY = 86400
_event_ids = itertools.count(1)

@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        APP_BASE_URL="http://example.test",
        WTF_CSRF_ENABLED=False,
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()

@pytest.fixture()
def gateway(app):
    return app.extensions["stripe_gateway"]

class FakeStripeSubscriptions(dict):
    """In-memory stand-in for Stripe's subscription store."""

    def __init__(self):
        super().__init__()
        self.calls = []

    def retrieve(self, sub_id):
        self.calls.append(sub_id)
        if sub_id not in self:
            raise BillingProviderError(f"Could not retrieve subscription {sub_id}")
        return self[sub_id]

@pytest.fixture()
def stripe_subscriptions(gateway, monkeypatch):
    fake = FakeStripeSubscriptions()
    monkeypatch.setattr(gateway, "retrieve_subscription", fake.retrieve)
    return fake

def make_subscription(sub_id="sub_1", *, status="active", period_end=None, cancel_at_period_end=False,
                      metadata=None, customer="cus_1", price_id="price_monthly"):
    now = int(time.time())
    if period_end is None:
        period_end = now + 30 * DAY
    return {
        "id": sub_id,
        "object": "subscription",
        "status": status,
        "customer": customer,
        "currency": "inr",
        "metadata": metadata or {},
        "start_date": now - DAY,
        "current_period_start": now - DAY,
        "current_period_end": period_end,
        "cancel_at_period_end": cancel_at_period_end,
        "canceled_at": None,
        "ended_at": None,
        "items": {
            "data": [
                {
                    "quantity": 1,
                    "price": {"id": price_id, "product": "prod_menu", "unit_amount": 49900},
                    "plan": {"id": price_id, "interval": "month", "amount": 49900},
                }
            ]
        },
    }

def make_event(event_type, obj, *, event_id=None, created=None):
    return {
        "id": event_id or f"evt_{next(_event_ids)}",
        "object": "event",
        "type": event_type,
        "created": int(time.time()) if created is None else created,
        "data": {"object": obj},
    }

def sign(payload: str, secret: str, timestamp=None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    mac = hmac.new(secret.encode("utf-8"), f"{ts}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"

@pytest.fixture()
def post_event(client):
    """POST a Stripe-signed event to the webhook endpoint."""
    def _post(event, secret=None, headers=None):
        body = json.dumps(event)
        hdrs = {"Stripe-Signature": sign(body, secret or os.environ["STRIPE_WEBHOOK_SECRET"])}
        hdrs.update(headers or {})
        return client.post("/webhooks/stripe", data=body, headers=hdrs, content_type="application/json")
    return _post

