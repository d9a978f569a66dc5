"""
Pure subscription lifecycle rules.

Nothing in here touches the database or Stripe: every function takes plain
Stripe-shaped dicts and returns values, so the access policy can be tested
without persistence.
"""
import time
from typing import Any, Dict, Optional

ACTIVE_STATUSES = frozenset({"active", "trialing"})

STATUS_PAST_DUE = "past_due"
STATUS_CANCELED = "canceled"

# Metadata keys that may carry the tenant (owner account) id, in priority order
TENANT_METADATA_KEYS = ("tenant_id", "user_id", "userId")


def compute_is_active(
    status: Optional[str],
    current_period_end: Optional[int],
    cancel_at_period_end: Optional[bool],
    now: Optional[float] = None,
) -> bool:
    """
    Single source of truth for the tenant access flag.

    All three must hold: status is active/trialing, the paid-through window
    (seconds since epoch) has not passed, and the subscription is not set to
    lapse at period end. The time check wins over a stale "active" status.
    """
    if now is None:
        now = time.time()
    ok_status = status in ACTIVE_STATUSES
    ok_time = bool(current_period_end) and current_period_end > now
    return bool(ok_status and ok_time and not cancel_at_period_end)


def snapshot_is_active(sub, now: Optional[float] = None) -> bool:
    if sub is None:
        return False
    return compute_is_active(sub.status, sub.current_period_end, sub.cancel_at_period_end, now=now)


def category_of(event_type: str) -> str:
    return (event_type or "").split(".", 1)[0]


def _id_of(value: Any) -> Optional[str]:
    # Stripe expands some references into objects
    if isinstance(value, dict):
        return value.get("id")
    return str(value) if value else None


def _first_item(sub_obj: Dict[str, Any]) -> Dict[str, Any]:
    items = (sub_obj.get("items") or {}).get("data") or []
    return items[0] if items else {}


def tenant_from_metadata(*objs: Optional[Dict[str, Any]]) -> Optional[str]:
    """First tenant id found in the metadata of the given Stripe objects."""
    for obj in objs:
        meta = (obj or {}).get("metadata") or {}
        for key in TENANT_METADATA_KEYS:
            val = meta.get(key)
            if val:
                return str(val)
    return None


def invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    # Newer API versions moved the reference under parent.subscription_details
    ref = invoice.get("subscription")
    if not ref:
        details = ((invoice.get("parent") or {}).get("subscription_details") or {})
        ref = details.get("subscription")
    return _id_of(ref)


def snapshot_fields(sub_obj: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map a Stripe subscription object onto Subscription columns.
    The first item drives price/plan descriptors (one price per subscription).
    """
    item = _first_item(sub_obj)
    price = item.get("price") or {}
    plan = item.get("plan") or {}
    recurring = price.get("recurring") or {}

    amount = plan.get("amount")
    if amount is None:
        amount = price.get("unit_amount")

    # Period bounds live on the item in newer API versions
    period_start = sub_obj.get("current_period_start") or item.get("current_period_start")
    period_end = sub_obj.get("current_period_end") or item.get("current_period_end")

    return {
        "price_id": price.get("id") or _id_of(plan.get("id")),
        "currency": sub_obj.get("currency") or price.get("currency"),
        "billing_interval": plan.get("interval") or recurring.get("interval"),
        "amount": amount or 0,
        "status": sub_obj.get("status") or "incomplete",
        "current_period_start": period_start,
        "current_period_end": period_end,
        "cancel_at_period_end": bool(sub_obj.get("cancel_at_period_end")),
        "started_at": sub_obj.get("start_date"),
        "canceled_at": sub_obj.get("canceled_at"),
        "ended_at": sub_obj.get("ended_at"),
        "customer_id": _id_of(sub_obj.get("customer")),
        "metadata_json": dict(sub_obj.get("metadata") or {}),
    }


def access_fields(sub_obj: Dict[str, Any]) -> Dict[str, Any]:
    """The subset of snapshot_fields that the access flag is computed from."""
    full = snapshot_fields(sub_obj)
    return {k: full[k] for k in ("status", "current_period_start", "current_period_end", "cancel_at_period_end")}


def canceled_fields(sub_obj: Dict[str, Any], now: Optional[float] = None) -> Dict[str, Any]:
    if now is None:
        now = time.time()
    ended = sub_obj.get("ended_at") or int(now)
    return {
        "status": STATUS_CANCELED,
        "ended_at": ended,
        "canceled_at": sub_obj.get("canceled_at") or ended,
    }


def is_stale(last_applied_at: Optional[int], event_created: Optional[int]) -> bool:
    """True when an event is older than the newest one already applied to a snapshot."""
    if last_applied_at is None or event_created is None:
        return False
    return int(event_created) < int(last_applied_at)
