"""
Segments
========

Declarative subscriber filters and the engine that turns one into a
campaign's recipient list.

Recognized predicates (combined with AND; there is no OR/NOT):
    status             -- subscriber status equals value
    interests          -- subscriber interests overlap the given set
    subscribed_after   -- subscribed_at >= bound (inclusive)
    subscribed_before  -- subscribed_at <= bound (inclusive)

Unknown keys are ignored when matching but kept for storage round-trips.
Only subscribers with status 'subscribed' are ever eligible.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, FrozenSet, List, Optional

from mailcast.modules.subscribers import SUBSCRIBED, SUBSCRIBER_STATUSES, as_utc

from .errors import NoEligibleRecipientsError, ValidationError

logger = logging.getLogger(__name__)

STATUS = 'status'
INTERESTS = 'interests'
SUBSCRIBED_AFTER = 'subscribed_after'
SUBSCRIBED_BEFORE = 'subscribed_before'
RECOGNIZED_KEYS = (STATUS, INTERESTS, SUBSCRIBED_AFTER, SUBSCRIBED_BEFORE)


def _parse_interests(value):
    if isinstance(value, str):
        # The admin form sends interests as a comma-separated string
        items = value.split(',')
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)
    else:
        raise ValidationError(f"'{INTERESTS}' must be a list or a comma-separated string")

    if not all(isinstance(i, str) for i in items):
        raise ValidationError(f"'{INTERESTS}' entries must be strings")

    interests = frozenset(i.strip() for i in items if i.strip())
    if not interests:
        raise ValidationError(f"'{INTERESTS}' must name at least one interest")
    return interests


def _parse_bound(key, value, end_of_day=False):
    """Parse an ISO date or datetime bound into an aware UTC datetime.

    A bare date used as an upper bound covers that whole day.
    """
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        parsed_date = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            if len(text) == 10:
                parsed_date = date.fromisoformat(text)
            else:
                return as_utc(datetime.fromisoformat(text.replace('Z', '+00:00')))
        except ValueError:
            raise ValidationError(f"'{key}' is not an ISO-8601 date or datetime: {value!r}")
    else:
        raise ValidationError(f"'{key}' must be an ISO-8601 date or datetime")

    bound = datetime.combine(parsed_date, time.min, tzinfo=timezone.utc)
    if end_of_day:
        bound += timedelta(days=1) - timedelta(microseconds=1)
    return bound


@dataclass(frozen=True)
class SegmentFilter:
    status: Optional[str] = None
    interests: Optional[FrozenSet[str]] = None
    subscribed_after: Optional[datetime] = None
    subscribed_before: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, mapping):
        """Validate a stored or submitted filter mapping. Raises ValidationError."""
        if mapping is None:
            mapping = {}
        if not isinstance(mapping, dict):
            raise ValidationError("Segment filter must be an object of predicate keys")

        status = mapping.get(STATUS)
        if status in ('', None):
            status = None
        elif status not in SUBSCRIBER_STATUSES:
            raise ValidationError(
                f"'{STATUS}' must be one of {', '.join(SUBSCRIBER_STATUSES)}", value=status)

        interests = None
        if mapping.get(INTERESTS) not in ('', None):
            interests = _parse_interests(mapping[INTERESTS])

        after = before = None
        if mapping.get(SUBSCRIBED_AFTER) not in ('', None):
            after = _parse_bound(SUBSCRIBED_AFTER, mapping[SUBSCRIBED_AFTER])
        if mapping.get(SUBSCRIBED_BEFORE) not in ('', None):
            before = _parse_bound(SUBSCRIBED_BEFORE, mapping[SUBSCRIBED_BEFORE], end_of_day=True)
        if after and before and after > before:
            raise ValidationError(f"'{SUBSCRIBED_AFTER}' must not be later than '{SUBSCRIBED_BEFORE}'")

        extra = {k: v for k, v in mapping.items() if k not in RECOGNIZED_KEYS}
        if extra:
            logger.debug(f"Ignoring unrecognized segment keys: {sorted(extra)}")

        return cls(
            status=status,
            interests=interests,
            subscribed_after=after,
            subscribed_before=before,
            raw=dict(mapping),
            extra=extra,
        )

    @property
    def is_empty(self):
        return (self.status is None and self.interests is None
                and self.subscribed_after is None and self.subscribed_before is None)

    def matches(self, subscriber):
        if subscriber.status != SUBSCRIBED:
            return False
        if self.status is not None and subscriber.status != self.status:
            return False
        if self.interests is not None and not (self.interests & set(subscriber.interests)):
            return False
        if self.subscribed_after is not None or self.subscribed_before is not None:
            subscribed_at = as_utc(subscriber.subscribed_at)
            if subscribed_at is None:
                return False
            if self.subscribed_after is not None and subscribed_at < self.subscribed_after:
                return False
            if self.subscribed_before is not None and subscribed_at > self.subscribed_before:
                return False
        return True

    def to_dict(self):
        """The filter as submitted, unknown keys included"""
        return dict(self.raw)


class SegmentationEngine:
    """Resolves a segment filter against a subscriber directory. Read-only."""

    def __init__(self, directory):
        self.directory = directory

    def _matching(self, segment):
        # The directory may pre-filter; the filter itself is the final word
        return [s for s in self.directory.list_eligible(segment) if segment.matches(s)]

    def resolve_recipients(self, segment) -> List:
        recipients = self._matching(segment)
        if not recipients:
            raise NoEligibleRecipientsError(
                "No subscribers match the campaign criteria", filter=segment.to_dict())
        return recipients

    def preview(self, segment):
        """Number of subscribers the filter currently matches"""
        return len(self._matching(segment))
