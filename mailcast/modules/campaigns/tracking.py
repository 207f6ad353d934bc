"""
Delivery Tracker
================

Records recipient events (opened, clicked, bounced, unsubscribed) against
send records. The first occurrence of each event kind wins; duplicates are
accepted as no-ops so provider webhooks can be retried safely. No ordering is
enforced between kinds and a click does not imply an open. Only records that
were actually delivered take events.
"""

import logging
from datetime import datetime, timezone

from .errors import InvalidStateTransitionError, NotFoundError, ValidationError
from .models import DeliveryStatus, EventKind, parse_timestamp

logger = logging.getLogger(__name__)


def parse_event_kind(value):
    try:
        return EventKind(value)
    except ValueError:
        kinds = ', '.join(k.value for k in EventKind)
        raise ValidationError(f"Unknown event kind {value!r}; expected one of {kinds}")


class DeliveryTracker:

    def __init__(self, store):
        self.store = store

    def record_event(self, send_id, kind, timestamp=None) -> bool:
        """Record an event. Returns True if it was new, False for a duplicate."""
        kind = parse_event_kind(kind)
        timestamp = parse_timestamp(timestamp) or datetime.now(timezone.utc)

        if self.store.record_event(send_id, kind, timestamp):
            logger.info(f"Send {send_id}: {kind.value} at {timestamp.isoformat()}")
            return True

        send = self.store.find_send(send_id)
        if send is None:
            raise NotFoundError(f"Send record {send_id} not found", send_id=send_id)
        if send.status != DeliveryStatus.SENT:
            raise InvalidStateTransitionError(
                "Send record was not delivered", send_id=send_id, status=send.status.value)
        logger.debug(f"Send {send_id}: duplicate {kind.value} event ignored")
        return False
