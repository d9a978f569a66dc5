from .gateway import StripeGateway, init_billing, get_gateway
from .ledger import EventLedger
from .lifecycle import compute_is_active
from .reconciler import SubscriptionReconciler

__all__ = [
    "StripeGateway",
    "init_billing",
    "get_gateway",
    "EventLedger",
    "SubscriptionReconciler",
    "compute_is_active",
]
