import json
from flask import request, jsonify, current_app
from . import bp
from menuqr.extensions import db, csrf, limiter
from menuqr.billing import EventLedger, SubscriptionReconciler, get_gateway
from menuqr.errors import BillingError, ConfigurationError


@bp.after_app_request
def _cors_headers(resp):
    # Every response under /webhooks/, including routing errors and preflight
    if not request.path.startswith("/webhooks/"):
        return resp
    cfg = current_app.config
    resp.headers["Access-Control-Allow-Origin"] = cfg.get("CORS_ALLOW_ORIGIN", "*")
    resp.headers["Access-Control-Allow-Headers"] = cfg.get("CORS_ALLOW_HEADERS", "")
    return resp


def _error(message: str, status: int):
    return jsonify({"error": message}), status


# ----- Stripe Webhook (subscriptions lifecycle) -----
@csrf.exempt
@limiter.exempt
@bp.route("/stripe", methods=["POST", "OPTIONS"], provide_automatic_options=False)
def stripe_webhook():
    """
    Stripe -> /webhooks/stripe
    Verifies the signature, records the event in the ledger, then reconciles
    the subscription snapshot and the owner's access flag.
    """
    if request.method == "OPTIONS":
        return current_app.response_class(status=200)

    # 1) Verify signature (nothing is persisted before this passes)
    sig_header = request.headers.get("Stripe-Signature")
    if not sig_header:
        return _error("No signature", 400)

    gateway = get_gateway()
    raw_bytes = request.get_data(cache=False, as_text=False) or b""
    try:
        event = gateway.verify_event(raw_bytes, sig_header)
    except ConfigurationError as e:
        current_app.logger.error("stripe_webhook_misconfigured: %s", e.message)
        return _error(e.message, 500)
    except BillingError as e:
        current_app.logger.warning("stripe_webhook_rejected: %s", e.message)
        return _error(e.message, e.status_code)

    current_app.logger.info(json.dumps({
        "event": "stripe_webhook",
        "provider_event_id": event["id"],
        "type": event["type"],
    }))

    # 2) Record, then 3) reconcile. A duplicate still re-runs the handler so
    # an event whose effect was lost converges on redelivery.
    try:
        recorded = EventLedger(db.session).record(event)
        SubscriptionReconciler(db.session, gateway).handle(event)
    except Exception as e:
        current_app.logger.exception(
            "stripe_webhook_handler_error",
            extra={"provider_event_id": event["id"], "type": event["type"]},
        )
        return _error(getattr(e, "message", None) or str(e), 500)

    body = {"ok": True}
    if not recorded:
        body["duplicate"] = True
    return jsonify(body), 200
