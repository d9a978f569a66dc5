import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from menuqr.errors import PersistenceError
from menuqr.models import Subscription, Restaurant, User, ACCOUNT_ACTIVE, ACCOUNT_INACTIVE
from .lifecycle import (
    STATUS_PAST_DUE,
    access_fields,
    canceled_fields,
    compute_is_active,
    invoice_subscription_id,
    is_stale,
    snapshot_fields,
    snapshot_is_active,
    tenant_from_metadata,
)

log = logging.getLogger(__name__)


def _log(event: str, **fields) -> None:
    log.info(json.dumps({"event": event, **fields}, default=str))


class SubscriptionReconciler:
    """
    Applies a verified Stripe event to the local subscription snapshot and the
    owning tenant's access flag.

    Each event type has its own handler; every handler that writes the flag
    goes through compute_is_active(). One commit per event.
    """

    def __init__(self, session, gateway, clock: Optional[Callable[[], float]] = None):
        self.session = session
        self.gateway = gateway
        self.clock = clock or time.time
        self._handlers = {
            "checkout.session.completed": self._on_checkout_completed,
            "customer.subscription.created": self._on_subscription_changed,
            "customer.subscription.updated": self._on_subscription_changed,
            "customer.subscription.deleted": self._on_subscription_deleted,
            "invoice.payment_succeeded": self._on_invoice_paid,
            "invoice.payment_failed": self._on_invoice_failed,
        }

    def handle(self, event: Dict[str, Any]) -> Dict[str, Any]:
        ev_type = event.get("type")
        handler = self._handlers.get(ev_type)
        if handler is None:
            return {"action": "ignored", "type": ev_type}

        data = event.get("data")
        obj = data.get("object") if isinstance(data, dict) else None
        if not isinstance(obj, dict):
            return {"action": "skipped", "reason": "no_object", "type": ev_type}
        created = event.get("created")
        try:
            outcome = handler(obj, created)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceError(f"Could not apply {ev_type} {event.get('id')}: {exc.__class__.__name__}") from exc
        except Exception:
            self.session.rollback()
            raise
        _log("billing_event_applied", provider_event_id=event.get("id"), type=ev_type, **outcome)
        return outcome

    def sync_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """Pull the live subscription from Stripe and reconcile it (ops/CLI path)."""
        try:
            sub_obj = self.gateway.retrieve_subscription(subscription_id)
            outcome = self._reconcile_live(sub_obj, tenant_hint=None, created=None)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceError(f"Could not sync subscription {subscription_id}") from exc
        except Exception:
            self.session.rollback()
            raise
        return outcome

    # --- handlers ---

    def _on_checkout_completed(self, checkout: Dict[str, Any], created: Optional[int]) -> Dict[str, Any]:
        sub_ref = checkout.get("subscription")
        sub_id = sub_ref.get("id") if isinstance(sub_ref, dict) else sub_ref
        if not sub_id:
            return {"action": "skipped", "reason": "no_subscription"}
        sub_obj = self.gateway.retrieve_subscription(sub_id)
        return self._reconcile_live(sub_obj, tenant_hint=tenant_from_metadata(checkout), created=created)

    def _on_subscription_changed(self, sub_obj: Dict[str, Any], created: Optional[int]) -> Dict[str, Any]:
        sub_id = sub_obj.get("id")
        if not sub_id:
            return {"action": "skipped", "reason": "no_subscription"}
        existing = self._find(sub_id)
        if existing is not None and is_stale(existing.last_event_at, created):
            return self._stale(existing, created)

        tenant_id = tenant_from_metadata(sub_obj) or (existing.tenant_id if existing else None)
        snap = self._upsert(sub_id, snapshot_fields(sub_obj), tenant_id, created, existing)
        return self._write_flag(snap, tenant_id)

    def _on_subscription_deleted(self, sub_obj: Dict[str, Any], created: Optional[int]) -> Dict[str, Any]:
        sub_id = sub_obj.get("id")
        existing = self._find(sub_id) if sub_id else None
        if existing is None:
            return {"action": "skipped", "reason": "unknown_subscription", "subscription_id": sub_id}
        if is_stale(existing.last_event_at, created):
            return self._stale(existing, created)

        for key, value in canceled_fields(sub_obj, now=self.clock()).items():
            setattr(existing, key, value)
        self._stamp(existing, created)

        # Deletion payloads don't reliably carry metadata; trust the stored tenant
        tenant_id = existing.tenant_id
        if not tenant_id:
            return self._unresolved(existing)
        self._set_access(tenant_id, False)
        return {"action": "canceled", "subscription_id": sub_id, "tenant_id": tenant_id, "active": False}

    def _on_invoice_paid(self, invoice: Dict[str, Any], created: Optional[int]) -> Dict[str, Any]:
        sub_id = invoice_subscription_id(invoice)
        if not sub_id:
            return {"action": "skipped", "reason": "no_subscription"}
        sub_obj = self.gateway.retrieve_subscription(sub_id)
        existing = self._find(sub_id)
        if existing is None or not existing.tenant_id:
            return self._unresolved(existing, subscription_id=sub_id)

        # Refresh only what the flag depends on; plan descriptors stay as upserted
        fields = access_fields(sub_obj)
        for key, value in fields.items():
            setattr(existing, key, value)
        self._stamp(existing, created)

        active = compute_is_active(
            fields["status"], fields["current_period_end"], fields["cancel_at_period_end"], now=self.clock()
        )
        self._set_access(existing.tenant_id, active)
        return {"action": "refreshed", "subscription_id": sub_id, "tenant_id": existing.tenant_id, "active": active}

    def _on_invoice_failed(self, invoice: Dict[str, Any], created: Optional[int]) -> Dict[str, Any]:
        sub_id = invoice_subscription_id(invoice)
        if not sub_id:
            return {"action": "skipped", "reason": "no_subscription"}
        existing = self._find(sub_id)
        if existing is None:
            return {"action": "skipped", "reason": "unknown_subscription", "subscription_id": sub_id}
        if is_stale(existing.last_event_at, created):
            return self._stale(existing, created)

        # Access is left as-is: a failed charge starts Stripe's retry window, it
        # does not revoke the menu. Cancellation or period expiry does that.
        existing.status = STATUS_PAST_DUE
        self._stamp(existing, created)
        return {"action": "past_due", "subscription_id": sub_id, "tenant_id": existing.tenant_id}

    # --- helpers ---

    def _reconcile_live(self, sub_obj: Dict[str, Any], tenant_hint: Optional[str], created: Optional[int]) -> Dict[str, Any]:
        # A freshly retrieved subscription is current, so no staleness check here
        sub_id = sub_obj.get("id")
        existing = self._find(sub_id)
        tenant_id = tenant_hint or tenant_from_metadata(sub_obj) or (existing.tenant_id if existing else None)
        snap = self._upsert(sub_id, snapshot_fields(sub_obj), tenant_id, created, existing)
        return self._write_flag(snap, tenant_id)

    def _find(self, sub_id: str) -> Optional[Subscription]:
        return self.session.query(Subscription).filter_by(stripe_subscription_id=sub_id).one_or_none()

    def _upsert(self, sub_id, fields, tenant_id, created, existing) -> Subscription:
        snap = existing
        if snap is None:
            snap = Subscription(stripe_subscription_id=sub_id)
            self.session.add(snap)
        for key, value in fields.items():
            setattr(snap, key, value)
        if tenant_id:
            snap.tenant_id = tenant_id
        self._stamp(snap, created)
        return snap

    @staticmethod
    def _stamp(snap: Subscription, created: Optional[int]) -> None:
        if created is None:
            return
        created = int(created)
        if snap.last_event_at is None or created > snap.last_event_at:
            snap.last_event_at = created

    def _write_flag(self, snap: Subscription, tenant_id: Optional[str]) -> Dict[str, Any]:
        if not tenant_id:
            return self._unresolved(snap)
        active = snapshot_is_active(snap, now=self.clock())
        self._set_access(tenant_id, active)
        return {
            "action": "upserted",
            "subscription_id": snap.stripe_subscription_id,
            "tenant_id": tenant_id,
            "status": snap.status,
            "active": active,
        }

    def _set_access(self, tenant_id: str, active: bool) -> None:
        value = ACCOUNT_ACTIVE if active else ACCOUNT_INACTIVE
        restaurants = (
            self.session.query(Restaurant)
            .filter_by(user_id=tenant_id)
            .update({"status": value}, synchronize_session=False)
        )
        users = (
            self.session.query(User)
            .filter_by(id=tenant_id)
            .update({"subscription": value}, synchronize_session=False)
        )
        if not (restaurants or users):
            log.warning("billing_tenant_not_found tenant_id=%s", tenant_id)

    def _unresolved(self, snap: Optional[Subscription], subscription_id: Optional[str] = None) -> Dict[str, Any]:
        sub_id = snap.stripe_subscription_id if snap is not None else subscription_id
        log.warning("billing_tenant_unresolved subscription_id=%s", sub_id)
        return {"action": "unresolved_tenant", "subscription_id": sub_id}

    def _stale(self, snap: Subscription, created: Optional[int]) -> Dict[str, Any]:
        log.warning(
            "billing_event_stale subscription_id=%s event_created=%s last_event_at=%s",
            snap.stripe_subscription_id, created, snap.last_event_at,
        )
        return {"action": "stale", "subscription_id": snap.stripe_subscription_id}
