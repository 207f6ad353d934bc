"""
Campaign Store
==============

sqlite persistence for campaigns and their send records.

Status changes are single conditional UPDATEs (``WHERE status IN (...)``);
callers learn whether they won from the affected row count, never from a
read followed by a write.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from mailcast.core import Database

from .errors import NotFoundError
from .models import Campaign, CampaignStatus, DeliveryStatus, EventKind, SendRecord

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


def _statuses(values):
    return tuple(CampaignStatus(v).value for v in values)


class CampaignStore:

    def __init__(self, db_path):
        self.db_path = db_path

    def _conn(self):
        return Database.connection(self.db_path)

    def init_db(self):
        """Create campaigns and campaign_sends tables"""
        Database.ensure_dir(self.db_path)
        with self._conn() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS campaigns (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    content TEXT NOT NULL,
                    template_id TEXT,
                    segment_filters TEXT NOT NULL DEFAULT '{}',
                    scheduled_at TIMESTAMP,
                    status TEXT NOT NULL DEFAULT 'draft',
                    total_recipients INTEGER NOT NULL DEFAULT 0,
                    sent_count INTEGER NOT NULL DEFAULT 0,
                    opened_count INTEGER NOT NULL DEFAULT 0,
                    clicked_count INTEGER NOT NULL DEFAULT 0,
                    bounced_count INTEGER NOT NULL DEFAULT 0,
                    unsubscribed_count INTEGER NOT NULL DEFAULT 0,
                    sent_at TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            ''')
            conn.execute('''
                CREATE TABLE IF NOT EXISTS campaign_sends (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    campaign_id INTEGER NOT NULL,
                    subscriber_id INTEGER NOT NULL,
                    email TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'sent',
                    error_message TEXT,
                    sent_at TIMESTAMP,
                    opened_at TIMESTAMP,
                    clicked_at TIMESTAMP,
                    bounced_at TIMESTAMP,
                    unsubscribed_at TIMESTAMP,
                    FOREIGN KEY (campaign_id) REFERENCES campaigns(id) ON DELETE CASCADE,
                    UNIQUE (campaign_id, subscriber_id)
                )
            ''')
            conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_campaigns_status
                ON campaigns(status, scheduled_at)
            ''')
            conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_campaign_sends_campaign
                ON campaign_sends(campaign_id)
            ''')
        logger.info("Campaigns database tables created/verified successfully")

    # ===================
    # CAMPAIGNS
    # ===================

    def create(self, fields) -> Campaign:
        """Insert a draft campaign from validated fields"""
        now = _iso(_now())
        with self._conn() as conn:
            cursor = conn.execute('''
                INSERT INTO campaigns (name, subject, content, template_id, segment_filters,
                                       scheduled_at, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                fields['name'],
                fields['subject'],
                fields['content'],
                fields.get('template_id'),
                json.dumps(fields.get('segment_filters') or {}),
                _iso(fields.get('scheduled_at')),
                CampaignStatus.DRAFT.value,
                now,
                now,
            ))
            campaign_id = cursor.lastrowid
        return self.get(campaign_id)

    def find(self, campaign_id) -> Optional[Campaign]:
        with self._conn() as conn:
            row = conn.execute('SELECT * FROM campaigns WHERE id = ?', (campaign_id,)).fetchone()
        return Campaign.from_row(row) if row else None

    def get(self, campaign_id) -> Campaign:
        campaign = self.find(campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found", campaign_id=campaign_id)
        return campaign

    def list(self, status=None, limit=50, offset=0) -> Tuple[List[Campaign], int]:
        """Campaigns newest first, with the total count for pagination"""
        where, params = '', ()
        if status:
            where, params = 'WHERE status = ?', (CampaignStatus(status).value,)
        with self._conn() as conn:
            total = conn.execute(f'SELECT COUNT(*) FROM campaigns {where}', params).fetchone()[0]
            rows = conn.execute(
                f'SELECT * FROM campaigns {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?',
                params + (limit, offset)
            ).fetchall()
        return [Campaign.from_row(row) for row in rows], total

    def update_draft(self, campaign_id, fields) -> bool:
        """Apply validated edits only while the campaign is still a draft"""
        if not fields:
            return self.find(campaign_id) is not None
        columns, values = [], []
        for key, value in fields.items():
            if key == 'segment_filters':
                value = json.dumps(value or {})
            elif key == 'scheduled_at':
                value = _iso(value)
            columns.append(f'{key} = ?')
            values.append(value)
        columns.append('updated_at = ?')
        values.append(_iso(_now()))

        with self._conn() as conn:
            cursor = conn.execute(
                f"UPDATE campaigns SET {', '.join(columns)} WHERE id = ? AND status = ?",
                values + [campaign_id, CampaignStatus.DRAFT.value]
            )
            return cursor.rowcount == 1

    def delete_if(self, campaign_id, statuses) -> bool:
        """Delete the campaign (and its sends) only if its status is one of statuses"""
        with self._conn() as conn:
            cursor = conn.execute(
                f"DELETE FROM campaigns WHERE id = ? AND status IN ({', '.join('?' * len(statuses))})",
                (campaign_id,) + _statuses(statuses)
            )
            return cursor.rowcount == 1

    def transition(self, campaign_id, from_statuses, to_status, **columns) -> bool:
        """Conditionally move a campaign to to_status, setting extra columns with it.

        Returns True only for the caller whose UPDATE matched the expected prior status.
        """
        assignments = ['status = ?', 'updated_at = ?']
        values = [CampaignStatus(to_status).value, _iso(_now())]
        for key, value in columns.items():
            assignments.append(f'{key} = ?')
            values.append(_iso(value) if isinstance(value, datetime) else value)

        from_values = _statuses(from_statuses)
        with self._conn() as conn:
            cursor = conn.execute(
                f"UPDATE campaigns SET {', '.join(assignments)} "
                f"WHERE id = ? AND status IN ({', '.join('?' * len(from_values))})",
                values + [campaign_id] + list(from_values)
            )
            return cursor.rowcount == 1

    def complete(self, campaign_id) -> bool:
        """sending -> sent, with sent_count taken from the delivered send records"""
        with self._conn() as conn:
            cursor = conn.execute('''
                UPDATE campaigns
                SET status = ?, updated_at = ?,
                    sent_count = (SELECT COUNT(*) FROM campaign_sends
                                  WHERE campaign_id = ? AND status = ?)
                WHERE id = ? AND status = ?
            ''', (CampaignStatus.SENT.value, _iso(_now()), campaign_id,
                  DeliveryStatus.SENT.value, campaign_id, CampaignStatus.SENDING.value))
            return cursor.rowcount == 1

    def due_campaigns(self, now=None) -> List[Campaign]:
        """Scheduled campaigns whose send time has been reached"""
        now = now or _now()
        with self._conn() as conn:
            rows = conn.execute(
                'SELECT * FROM campaigns WHERE status = ? AND scheduled_at IS NOT NULL ORDER BY scheduled_at',
                (CampaignStatus.SCHEDULED.value,)
            ).fetchall()
        return [c for c in (Campaign.from_row(row) for row in rows) if c.is_due(now)]

    # ===================
    # SEND RECORDS
    # ===================

    def create_sends(self, campaign_id, recipients: Iterable, sent_at=None) -> List[int]:
        """Insert one 'sent' record per recipient, skipping recipients that already have one.

        Returns the subscriber ids whose records were created by this call.
        """
        sent_at = _iso(sent_at or _now())
        created = []
        with self._conn() as conn:
            for subscriber in recipients:
                cursor = conn.execute('''
                    INSERT OR IGNORE INTO campaign_sends (campaign_id, subscriber_id, email, status, sent_at)
                    VALUES (?, ?, ?, ?, ?)
                ''', (campaign_id, subscriber.id, subscriber.email, DeliveryStatus.SENT.value, sent_at))
                if cursor.rowcount == 1:
                    created.append(subscriber.id)
        return created

    def send_subscriber_ids(self, campaign_id, status=None) -> set:
        query, params = 'SELECT subscriber_id FROM campaign_sends WHERE campaign_id = ?', (campaign_id,)
        if status:
            query += ' AND status = ?'
            params += (DeliveryStatus(status).value,)
        with self._conn() as conn:
            rows = conn.execute(query, params).fetchall()
        return {row[0] for row in rows}

    def mark_sends(self, campaign_id, subscriber_ids, status, error_message=None):
        """Set the delivery status of the given recipients' records"""
        subscriber_ids = list(subscriber_ids)
        if not subscriber_ids:
            return 0
        with self._conn() as conn:
            cursor = conn.executemany('''
                UPDATE campaign_sends SET status = ?, error_message = ?
                WHERE campaign_id = ? AND subscriber_id = ?
            ''', [(DeliveryStatus(status).value, error_message, campaign_id, sid)
                  for sid in subscriber_ids])
            return cursor.rowcount

    def get_sends(self, campaign_id, status=None) -> List[SendRecord]:
        query, params = 'SELECT * FROM campaign_sends WHERE campaign_id = ?', (campaign_id,)
        if status:
            query += ' AND status = ?'
            params += (DeliveryStatus(status).value,)
        with self._conn() as conn:
            rows = conn.execute(query + ' ORDER BY id', params).fetchall()
        return [SendRecord.from_row(row) for row in rows]

    def find_send(self, send_id) -> Optional[SendRecord]:
        with self._conn() as conn:
            row = conn.execute('SELECT * FROM campaign_sends WHERE id = ?', (send_id,)).fetchone()
        return SendRecord.from_row(row) if row else None

    def record_event(self, send_id, kind, timestamp) -> bool:
        """Set the event timestamp if it is still unset and bump the campaign counter.

        Both writes share one transaction. Only delivered ('sent') records
        take events. Returns False when nothing was written: the timestamp
        was already set (first occurrence wins) or the record was not delivered.
        """
        kind = EventKind(kind)
        with self._conn() as conn:
            cursor = conn.execute(
                f'UPDATE campaign_sends SET {kind.column} = ? WHERE id = ? AND {kind.column} IS NULL '
                "AND status = 'sent'",
                (_iso(timestamp), send_id)
            )
            if cursor.rowcount != 1:
                return False
            conn.execute(f'''
                UPDATE campaigns SET {kind.counter} = {kind.counter} + 1
                WHERE id = (SELECT campaign_id FROM campaign_sends WHERE id = ?)
            ''', (send_id,))
            return True
