import hashlib
import json
import math
import time
from typing import Any, Dict, Optional
from urllib.parse import urljoin

from flask import current_app

from menuqr.billing.gateway import StripeGateway
from menuqr.billing.lifecycle import snapshot_is_active
from menuqr.extensions import db
from menuqr.models import Subscription

# Banner stays hidden for healthy plans with more than this many days left
RENEWAL_WARNING_DAYS = 7


def _absolute_url(path: str) -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))


def make_idempotency_key(*parts: Any) -> str:
    raw = "|".join(str(p) for p in parts)
    return "checkout:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]

def _params_hash(d: Dict[str, Any]) -> str:
    # Stable across runs if params identical; changes when fields change
    return hashlib.sha256(json.dumps(d, sort_keys=True, separators=(",", ":")).encode("utf-8")).hexdigest()[:16]


def latest_subscription(tenant_id: str) -> Optional[Subscription]:
    return (
        db.session.query(Subscription)
        .filter_by(tenant_id=tenant_id)
        .order_by(Subscription.updated_at.desc(), Subscription.id.desc())
        .first()
    )


def create_checkout_session(gateway: StripeGateway, *, price_id: str, tenant_id: str, email: Optional[str] = None) -> Dict[str, Any]:
    """
    Create a Stripe Checkout Session for a subscription to the given Price.
    The tenant id rides along as metadata on both the session and the
    subscription so webhooks can attach the subscription to its owner.
    Returns: {"id": <session_id>, "url": <redirect_url or None>}
    """
    meta = {"tenant_id": str(tenant_id), "user_id": str(tenant_id)}
    subscription_data: Dict[str, Any] = {"metadata": meta}
    trial_days = int(current_app.config.get("CHECKOUT_TRIAL_DAYS") or 0)
    if trial_days > 0:
        subscription_data["trial_period_days"] = trial_days

    params: Dict[str, Any] = {
        "mode": "subscription",
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": _absolute_url("dashboard?checkout=success&session_id={CHECKOUT_SESSION_ID}"),
        "cancel_url": _absolute_url("pricing"),
        "allow_promotion_codes": True,
        "metadata": meta,
        "subscription_data": subscription_data,
    }
    if email:
        params["customer_email"] = email

    idem = make_idempotency_key("checkout", "v1", tenant_id, price_id, _params_hash(params))
    return gateway.create_checkout_session(params, idempotency_key=idem)


def create_portal_session(gateway: StripeGateway, *, customer_id: str, return_path: str = "/dashboard") -> Dict[str, Any]:
    """Create a Stripe Customer Portal session for an existing Customer."""
    return gateway.create_portal_session(customer_id, _absolute_url(return_path))


def days_left(period_end: Optional[int], now: Optional[float] = None) -> int:
    if not period_end:
        return 0
    if now is None:
        now = time.time()
    return max(0, math.ceil((period_end - now) / 86400))


def billing_banner(sub: Optional[Subscription], now: Optional[float] = None) -> Dict[str, Any]:
    """Dashboard banner state for the owner's latest subscription."""
    active = snapshot_is_active(sub, now=now)
    remaining = days_left(sub.current_period_end if sub else None, now=now)

    if active and remaining > RENEWAL_WARNING_DAYS:
        message = None
    elif active:
        message = f"Your plan renews in {remaining} day{'' if remaining == 1 else 's'}."
    else:
        message = "Your subscription is expired. Renew to re-activate your menu."

    return {
        "active": active,
        "status": sub.status if sub else None,
        "days_left": remaining,
        "show": message is not None,
        "message": message,
        "has_billing_portal": bool(sub and sub.customer_id),
    }
