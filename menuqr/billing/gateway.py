import json
import logging
from typing import Any, Dict, Optional

import stripe
from stripe import StripeClient

from menuqr.errors import BillingProviderError, ConfigurationError, VerificationError

log = logging.getLogger(__name__)


def _plain(obj: Any) -> Dict[str, Any]:
    """Stripe SDK objects -> plain dicts (tests and callers may already pass dicts)."""
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


class StripeGateway:
    """
    The only place the app talks to Stripe. Built once per app from config by
    init_billing(); request code gets it via get_gateway().
    """

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str], tolerance: int = 300):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance
        self._client: Optional[StripeClient] = None

    @classmethod
    def from_config(cls, config) -> "StripeGateway":
        return cls(
            secret_key=config.get("STRIPE_SECRET_KEY"),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            tolerance=int(config.get("STRIPE_WEBHOOK_TOLERANCE") or 300),
        )

    @property
    def client(self) -> StripeClient:
        if self._client is None:
            if not self.secret_key:
                raise ConfigurationError("STRIPE_SECRET_KEY is not configured")
            self._client = StripeClient(self.secret_key)
        return self._client

    # --- webhooks ---

    def verify_event(self, payload: bytes, sig_header: str) -> Dict[str, Any]:
        """
        Check the Stripe-Signature header against the raw body and return the
        parsed event. Raises ConfigurationError / VerificationError.
        """
        if not self.webhook_secret:
            raise ConfigurationError("Missing webhook secret")
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise VerificationError("Invalid payload") from exc
        try:
            stripe.WebhookSignature.verify_header(body, sig_header, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as exc:
            raise VerificationError("Invalid signature") from exc
        try:
            event = json.loads(body)
        except ValueError as exc:
            raise VerificationError("Invalid payload") from exc
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise VerificationError("Malformed event")
        return event

    # --- API calls ---

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        try:
            sub = self.client.subscriptions.retrieve(subscription_id)
        except stripe.StripeError as exc:
            log.warning("stripe.subscriptions.retrieve failed for %s: %s", subscription_id, exc)
            raise BillingProviderError(f"Could not retrieve subscription {subscription_id}") from exc
        return _plain(sub)

    def create_checkout_session(self, params: Dict[str, Any], idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        options = {"idempotency_key": idempotency_key} if idempotency_key else {}
        try:
            session = self.client.checkout.sessions.create(params=params, options=options)
        except stripe.StripeError as exc:
            raise BillingProviderError(getattr(exc, "user_message", None) or str(exc)) from exc
        return {"id": session.id, "url": getattr(session, "url", None)}

    def create_portal_session(self, customer_id: str, return_url: str) -> Dict[str, Any]:
        try:
            session = self.client.billing_portal.sessions.create(
                params={"customer": customer_id, "return_url": return_url}
            )
        except stripe.StripeError as exc:
            raise BillingProviderError(getattr(exc, "user_message", None) or str(exc)) from exc
        return {"url": session.url}


def init_billing(app) -> None:
    gateway = StripeGateway.from_config(app.config)
    app.extensions["stripe_gateway"] = gateway
    if not gateway.secret_key:
        app.logger.warning("Stripe secret key missing; billing features will not work")


def get_gateway() -> StripeGateway:
    from flask import current_app
    return current_app.extensions["stripe_gateway"]
