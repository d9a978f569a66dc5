from flask import request, current_app, jsonify
from flask_login import login_required, current_user
from . import bp
from menuqr.extensions import limiter
from menuqr.billing import get_gateway
from menuqr.billing.lifecycle import snapshot_is_active
from menuqr.errors import BillingError
from menuqr.services import billing as billing_service


@bp.get("/status.json")
@login_required
def status_json():
    """Subscription banner state for the signed-in owner."""
    sub = billing_service.latest_subscription(current_user.id)
    return jsonify(billing_service.billing_banner(sub))


@bp.post("/checkout.json")
@limiter.limit("10/minute")
@login_required
def checkout_json():
    """
    Create a Checkout Session and return its id/url for the Stripe.js redirect.
    """
    data = request.get_json(silent=True) or {}
    price_id = (data.get("price_id") or "").strip()
    if not price_id:
        return jsonify({"error": "Missing price_id"}), 400

    # Block duplicate purchases while already active/trialing
    sub = billing_service.latest_subscription(current_user.id)
    if snapshot_is_active(sub):
        return jsonify({"error": "Subscription already active"}), 409

    try:
        payload = billing_service.create_checkout_session(
            get_gateway(),
            price_id=price_id,
            tenant_id=current_user.id,
            email=getattr(current_user, "email", None),
        )
    except BillingError as e:
        current_app.logger.exception(
            "billing.checkout_json.session_create_failed",
            extra={"tenant_id": current_user.id, "price_id": price_id},
        )
        return jsonify({"error": e.message}), e.status_code

    if not payload.get("url") and not payload.get("id"):
        return jsonify({"error": "Could not create checkout session"}), 502
    return jsonify({"sessionId": payload.get("id"), "url": payload.get("url")})


@bp.post("/portal.json")
@limiter.limit("10/minute")
@login_required
def portal_json():
    """Open the Stripe customer portal for the owner's own billing customer."""
    data = request.get_json(silent=True) or {}
    return_path = data.get("return_url") or "/dashboard"
    if not return_path.startswith("/"):
        # Only same-site return paths; never an arbitrary external URL
        return_path = "/dashboard"

    sub = billing_service.latest_subscription(current_user.id)
    if not (sub and sub.customer_id):
        return jsonify({"error": "No billing profile for this account"}), 404

    try:
        payload = billing_service.create_portal_session(
            get_gateway(), customer_id=sub.customer_id, return_path=return_path
        )
    except BillingError as e:
        current_app.logger.exception(
            "billing.portal_json.session_create_failed",
            extra={"tenant_id": current_user.id},
        )
        return jsonify({"error": e.message}), e.status_code

    url = payload.get("url")
    if not url:
        return jsonify({"error": "Could not create portal session"}), 502
    return jsonify({"url": url})
