from sqlalchemy import func
from menuqr.extensions import db
from .types import JSONType

class BillingEvent(db.Model):
    """Append-only ledger of verified Stripe events. Rows are never updated or deleted."""
    __tablename__ = "billing_events"

    id = db.Column(db.Integer, primary_key=True)
    provider_event_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    event_type = db.Column(db.String(80), nullable=False, index=True)
    category = db.Column(db.String(40), nullable=False, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    payload = db.Column(JSONType, nullable=False, default=dict)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<BillingEvent {self.provider_event_id!r} type={self.event_type!r}>"
