from .user import User, ACCOUNT_ACTIVE, ACCOUNT_INACTIVE
from .restaurant import Restaurant
from .subscription import Subscription
from .billing_event import BillingEvent

__all__ = [
    "User",
    "Restaurant",
    "Subscription",
    "BillingEvent",
    "ACCOUNT_ACTIVE",
    "ACCOUNT_INACTIVE",
]
