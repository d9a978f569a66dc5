from sqlalchemy import func
from menuqr.extensions import db
from .types import JSONType

class Subscription(db.Model):
    """Local mirror of a Stripe subscription. One row per stripe_subscription_id."""
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    stripe_subscription_id = db.Column(db.String(64), nullable=False, unique=True, index=True)

    # Resolved from checkout/subscription metadata; may be NULL until a later event names it
    tenant_id = db.Column(db.String(64), nullable=True, index=True)
    customer_id = db.Column(db.String(64), nullable=True, index=True)

    price_id = db.Column(db.String(64), nullable=True, index=True)
    currency = db.Column(db.String(8), nullable=True)
    billing_interval = db.Column(db.String(16), nullable=True)
    amount = db.Column(db.BigInteger, nullable=False, default=0, server_default=db.text("0"))

    status = db.Column(db.String(32), nullable=False, index=True, default="incomplete", server_default=db.text("'incomplete'"))
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False, server_default=db.text("false"))

    # Seconds since epoch, as Stripe reports them
    current_period_start = db.Column(db.BigInteger, nullable=True)
    current_period_end = db.Column(db.BigInteger, nullable=True, index=True)
    started_at = db.Column(db.BigInteger, nullable=True)
    canceled_at = db.Column(db.BigInteger, nullable=True)
    ended_at = db.Column(db.BigInteger, nullable=True)

    # Provider creation time of the newest event applied to this row
    last_event_at = db.Column(db.BigInteger, nullable=True)

    metadata_json = db.Column(JSONType, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<Subscription {self.stripe_subscription_id!r} tenant_id={self.tenant_id!r} status={self.status!r}>"
