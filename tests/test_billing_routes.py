import time

from menuqr.errors import BillingProviderError
from menuqr.extensions import db
from menuqr.models import Subscription, User
from conftest import DAY

def _login(client, user_id: str):
    # Simulate Flask-Login session
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)

def _owner(app, tenant_id="t1", sub=None):
    with app.app_context():
        db.session.add(User(id=tenant_id, email=f"{tenant_id}@example.com"))
        if sub:
            db.session.add(Subscription(tenant_id=tenant_id, **sub))
        db.session.commit()

def test_billing_routes_require_login(client):
    assert client.get("/billing/status.json").status_code == 401
    assert client.post("/billing/checkout.json", json={"price_id": "price_m"}).status_code == 401
    assert client.post("/billing/portal.json", json={}).status_code == 401

def test_status_hidden_when_healthy(app, client):
    _owner(app, sub={
        "stripe_subscription_id": "sub_ok", "status": "active", "customer_id": "cus_1",
        "current_period_end": int(time.time()) + 20 * DAY,
    })
    _login(client, "t1")
    data = client.get("/billing/status.json").get_json()
    assert data["active"] is True
    assert data["show"] is False
    assert data["has_billing_portal"] is True

def test_status_warns_when_renewal_is_close(app, client):
    _owner(app, sub={
        "stripe_subscription_id": "sub_soon", "status": "active",
        "current_period_end": int(time.time()) + 3 * DAY - 60,
    })
    _login(client, "t1")
    data = client.get("/billing/status.json").get_json()
    assert data["show"] is True
    assert data["days_left"] == 3
    assert data["message"] == "Your plan renews in 3 days."

def test_status_expired_when_no_subscription(app, client):
    _owner(app)
    _login(client, "t1")
    data = client.get("/billing/status.json").get_json()
    assert data["active"] is False
    assert data["show"] is True
    assert data["message"].startswith("Your subscription is expired")
    assert data["has_billing_portal"] is False

def test_checkout_stamps_tenant_metadata(app, client, gateway, monkeypatch):
    _owner(app)
    captured = {}

    def _fake_create(params, idempotency_key=None):
        captured["params"] = params
        captured["idem"] = idempotency_key
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

    monkeypatch.setattr(gateway, "create_checkout_session", _fake_create)
    _login(client, "t1")

    resp = client.post("/billing/checkout.json", json={"price_id": "price_m"})
    assert resp.status_code == 200
    assert resp.get_json() == {"sessionId": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

    params = captured["params"]
    assert params["mode"] == "subscription"
    assert params["line_items"] == [{"price": "price_m", "quantity": 1}]
    assert params["metadata"]["tenant_id"] == "t1"
    assert params["subscription_data"]["metadata"]["user_id"] == "t1"
    assert params["customer_email"] == "t1@example.com"
    assert params["success_url"].startswith("http://example.test/")
    assert captured["idem"].startswith("checkout:")

def test_checkout_requires_price(app, client):
    _owner(app)
    _login(client, "t1")
    resp = client.post("/billing/checkout.json", json={})
    assert resp.status_code == 400

def test_checkout_conflict_when_already_active(app, client):
    _owner(app, sub={
        "stripe_subscription_id": "sub_live", "status": "trialing",
        "current_period_end": int(time.time()) + 5 * DAY,
    })
    _login(client, "t1")
    resp = client.post("/billing/checkout.json", json={"price_id": "price_m"})
    assert resp.status_code == 409

def test_checkout_provider_error_surfaces_message(app, client, gateway, monkeypatch):
    _owner(app)

    def _fail(params, idempotency_key=None):
        raise BillingProviderError("No such price: 'price_x'")

    monkeypatch.setattr(gateway, "create_checkout_session", _fail)
    _login(client, "t1")
    resp = client.post("/billing/checkout.json", json={"price_id": "price_x"})
    assert resp.status_code == 502
    assert resp.get_json() == {"error": "No such price: 'price_x'"}

def test_portal_uses_stored_customer(app, client, gateway, monkeypatch):
    _owner(app, sub={"stripe_subscription_id": "sub_p", "status": "canceled", "customer_id": "cus_owner"})
    seen = {}

    def _fake_portal(customer_id, return_url):
        seen["customer_id"], seen["return_url"] = customer_id, return_url
        return {"url": "https://billing.stripe.test/session"}

    monkeypatch.setattr(gateway, "create_portal_session", _fake_portal)
    _login(client, "t1")

    # A client-supplied customer id is ignored; off-site return URLs are dropped
    resp = client.post("/billing/portal.json", json={"customer_id": "cus_someone_else", "return_url": "https://evil.test"})
    assert resp.status_code == 200
    assert resp.get_json() == {"url": "https://billing.stripe.test/session"}
    assert seen == {"customer_id": "cus_owner", "return_url": "http://example.test/dashboard"}

def test_portal_without_billing_profile_is_404(app, client):
    _owner(app)
    _login(client, "t1")
    assert client.post("/billing/portal.json", json={}).status_code == 404
