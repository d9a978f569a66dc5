import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from menuqr.errors import PersistenceError
from menuqr.models import BillingEvent
from .lifecycle import category_of

log = logging.getLogger(__name__)


class EventLedger:
    """
    Append-only record of verified billing events, keyed by provider event id.

    record() is the only write. A redelivered event hits the unique constraint
    and is reported as already recorded, not as an error.
    """

    def __init__(self, session):
        self.session = session

    def record(self, event: Dict[str, Any]) -> bool:
        """Insert the event. Returns False when its id was already recorded."""
        created = event.get("created")
        occurred_at = (
            datetime.fromtimestamp(int(created), tz=timezone.utc)
            if created is not None
            else datetime.now(timezone.utc)
        )
        row = BillingEvent(
            provider_event_id=event["id"],
            event_type=event["type"],
            category=category_of(event["type"]),
            occurred_at=occurred_at,
            payload=event,
        )
        try:
            self.session.add(row)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if self.get(event["id"]) is None:
                # Some other constraint, not a redelivery
                raise PersistenceError(f"Could not record billing event {event['id']}: {exc.__class__.__name__}") from exc
            log.info("billing_event_duplicate provider_event_id=%s", event["id"])
            return False
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceError(f"Could not record billing event {event['id']}: {exc.__class__.__name__}") from exc
        return True

    def get(self, provider_event_id: str) -> Optional[BillingEvent]:
        try:
            return self.session.query(BillingEvent).filter_by(provider_event_id=provider_event_id).one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not read billing event {provider_event_id}") from exc
