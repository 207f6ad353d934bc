"""
Subscriber Directory
====================

Read side of the newsletter subscriber list. Campaigns only ever read from
here; the add/unsubscribe helpers exist for imports and seeding.

Exported helpers:
- SubscriberDirectory(db_path).list_eligible(segment)
- SubscriberDirectory(db_path).get(subscriber_id)
- init_subscribers_db(db_path)
"""

import json
import logging
import re
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from mailcast.core import Database, db_log

# Email validation regex: rejects consecutive dots, leading/trailing dots
EMAIL_REGEX = re.compile(r'^[a-zA-Z0-9_%+-]+(\.[a-zA-Z0-9_%+-]+)*@[a-zA-Z0-9-]+(\.[a-zA-Z0-9-]+)*\.[a-zA-Z]{2,}$')

SUBSCRIBED = 'subscribed'
UNSUBSCRIBED = 'unsubscribed'
PENDING = 'pending'
SUBSCRIBER_STATUSES = (SUBSCRIBED, UNSUBSCRIBED, PENDING)

logger = logging.getLogger(__name__)


def _db_log(level, message, details=None):
    db_log(level, 'subscribers', message, details)


def as_utc(value):
    """Parse an ISO timestamp (or pass a datetime through) as an aware UTC datetime"""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Subscriber:
    id: int
    email: str
    status: str = SUBSCRIBED
    first_name: str = ''
    last_name: str = ''
    interests: frozenset = field(default_factory=frozenset)
    subscribed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row):
        interests = json.loads(row['interests']) if row['interests'] else []
        return cls(
            id=row['id'],
            email=row['email'],
            status=row['status'],
            first_name=row['first_name'] or '',
            last_name=row['last_name'] or '',
            interests=frozenset(interests),
            subscribed_at=as_utc(row['subscribed_at']),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'status': self.status,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'interests': sorted(self.interests),
            'subscribed_at': self.subscribed_at.isoformat() if self.subscribed_at else None,
        }


def validate_email(email):
    """Validate email format"""
    if not email or len(email) > 255:
        return False
    return EMAIL_REGEX.match(email.lower().strip()) is not None


def init_subscribers_db(db_path):
    """Initialize the subscribers table in the database"""
    Database.ensure_dir(db_path)
    with Database.connection(db_path) as conn:
        conn.execute('''
            CREATE TABLE IF NOT EXISTS subscribers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT UNIQUE NOT NULL,
                first_name TEXT DEFAULT '',
                last_name TEXT DEFAULT '',
                status TEXT NOT NULL DEFAULT 'subscribed',
                interests TEXT DEFAULT '[]',
                subscribed_at TIMESTAMP NOT NULL,
                unsubscribed_at TIMESTAMP,
                source TEXT DEFAULT 'website',
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')
        conn.execute('''
            CREATE INDEX IF NOT EXISTS idx_subscribers_status
            ON subscribers(status, subscribed_at)
        ''')
    logger.info("Subscribers database table created/verified successfully")


class SubscriberDirectory:
    """sqlite-backed subscriber list used as the campaign audience source"""

    def __init__(self, db_path):
        self.db_path = db_path

    def list_eligible(self, segment) -> List[Subscriber]:
        """Subscribers with status 'subscribed' that match the segment filter"""
        with Database.connection(self.db_path) as conn:
            rows = conn.execute(
                'SELECT * FROM subscribers WHERE status = ? ORDER BY subscribed_at, id',
                (SUBSCRIBED,)
            ).fetchall()
        subscribers = [Subscriber.from_row(row) for row in rows]
        return [s for s in subscribers if segment.matches(s)]

    def get(self, subscriber_id) -> Optional[Subscriber]:
        with Database.connection(self.db_path) as conn:
            row = conn.execute(
                'SELECT * FROM subscribers WHERE id = ?', (subscriber_id,)
            ).fetchone()
        return Subscriber.from_row(row) if row else None

    def add(self, email, first_name='', last_name='', status=SUBSCRIBED,
            interests=None, subscribed_at=None, source='website') -> int:
        """Insert a subscriber and return its id. Raises ValueError on bad input."""
        email = (email or '').lower().strip()
        if not validate_email(email):
            raise ValueError(f"Invalid email address: {email!r}")
        if status not in SUBSCRIBER_STATUSES:
            raise ValueError(f"Invalid subscriber status: {status!r}")

        subscribed_at = as_utc(subscribed_at) or datetime.now(timezone.utc)
        interests = sorted({i.strip() for i in (interests or []) if i and i.strip()})

        try:
            with Database.connection(self.db_path) as conn:
                cursor = conn.execute('''
                    INSERT INTO subscribers (email, first_name, last_name, status, interests, subscribed_at, source)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                ''', (email, first_name, last_name, status, json.dumps(interests),
                      subscribed_at.isoformat(), source))
                subscriber_id = cursor.lastrowid
        except sqlite3.IntegrityError:
            raise ValueError(f"Subscriber already exists: {email}")

        logger.info(f"New subscriber: {email}")
        _db_log('info', 'New subscriber added', {'email': email, 'source': source})
        return subscriber_id

    def unsubscribe(self, email):
        """Mark a subscriber as unsubscribed. Returns True if a row changed."""
        email = (email or '').lower().strip()
        with Database.connection(self.db_path) as conn:
            cursor = conn.execute('''
                UPDATE subscribers
                SET status = ?, unsubscribed_at = ?, updated_at = CURRENT_TIMESTAMP
                WHERE email = ? AND status != ?
            ''', (UNSUBSCRIBED, datetime.now(timezone.utc).isoformat(), email, UNSUBSCRIBED))
            changed = cursor.rowcount > 0

        if changed:
            logger.info(f"Unsubscribed: {email}")
            _db_log('info', 'Subscriber unsubscribed', {'email': email})
        return changed

    def count(self, status=SUBSCRIBED):
        """Helper function to get current subscriber count"""
        with Database.connection(self.db_path) as conn:
            return conn.execute(
                'SELECT COUNT(*) FROM subscribers WHERE status = ?', (status,)
            ).fetchone()[0]
