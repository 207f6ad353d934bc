"""
Subscribers Module
==================

Provides:
- Subscriber records (email, name, status, interests, subscribe time)
- SubscriberDirectory: the read-only audience source campaigns segment against
- Seeding helpers (add, unsubscribe, count) for imports and tests
"""

from .directory import (
    Subscriber, SubscriberDirectory, init_subscribers_db, validate_email, as_utc,
    SUBSCRIBED, UNSUBSCRIBED, PENDING, SUBSCRIBER_STATUSES,
)

__all__ = [
    'Subscriber', 'SubscriberDirectory', 'init_subscribers_db', 'validate_email', 'as_utc',
    'SUBSCRIBED', 'UNSUBSCRIBED', 'PENDING', 'SUBSCRIBER_STATUSES',
]
