"""
Campaigns Models
================

Campaign and send-record types, the campaign status state machine, and
field validation for user-facing edits.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from mailcast.modules.subscribers import as_utc

from .errors import InvalidStateTransitionError, ValidationError
from .segments import SegmentFilter


class CampaignStatus(str, Enum):
    DRAFT = 'draft'
    SCHEDULED = 'scheduled'
    SENDING = 'sending'
    PAUSED = 'paused'
    SENT = 'sent'
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self):
        return not TRANSITIONS[self]


TRANSITIONS = {
    CampaignStatus.DRAFT: frozenset({CampaignStatus.SCHEDULED, CampaignStatus.SENDING,
                                     CampaignStatus.CANCELLED}),
    CampaignStatus.SCHEDULED: frozenset({CampaignStatus.SENDING, CampaignStatus.CANCELLED}),
    CampaignStatus.SENDING: frozenset({CampaignStatus.SENT, CampaignStatus.PAUSED}),
    CampaignStatus.PAUSED: frozenset({CampaignStatus.CANCELLED}),
    CampaignStatus.SENT: frozenset(),
    CampaignStatus.CANCELLED: frozenset(),
}

SENDABLE = (CampaignStatus.DRAFT, CampaignStatus.SCHEDULED)
DELETABLE = (CampaignStatus.DRAFT, CampaignStatus.SCHEDULED,
             CampaignStatus.PAUSED, CampaignStatus.CANCELLED)


def can_transition(current, target):
    return CampaignStatus(target) in TRANSITIONS[CampaignStatus(current)]


def sources_for(target):
    """All statuses that may move to target"""
    target = CampaignStatus(target)
    return tuple(s for s, allowed in TRANSITIONS.items() if target in allowed)


def ensure_transition(campaign, target):
    if not can_transition(campaign.status, target):
        raise InvalidStateTransitionError(
            f"Cannot move campaign {campaign.id} from '{campaign.status.value}' "
            f"to '{CampaignStatus(target).value}'",
            campaign_id=campaign.id, status=campaign.status.value)


class DeliveryStatus(str, Enum):
    SENT = 'sent'
    FAILED = 'failed'
    SKIPPED = 'skipped'


class EventKind(str, Enum):
    OPENED = 'opened'
    CLICKED = 'clicked'
    BOUNCED = 'bounced'
    UNSUBSCRIBED = 'unsubscribed'

    @property
    def column(self):
        """Send-record timestamp column for this event"""
        return f'{self.value}_at'

    @property
    def counter(self):
        """Campaign counter column for this event"""
        return f'{self.value}_count'


EDITABLE_FIELDS = ('name', 'subject', 'content', 'template_id', 'segment_filters', 'scheduled_at')
REQUIRED_FIELDS = ('name', 'subject', 'content')
COUNTER_FIELDS = ('total_recipients', 'sent_count', 'opened_count', 'clicked_count',
                  'bounced_count', 'unsubscribed_count')


def _iso(value):
    return value.isoformat() if value else None


def parse_timestamp(value, key='timestamp'):
    if value in (None, ''):
        return None
    try:
        if isinstance(value, str):
            value = value.replace('Z', '+00:00')
        return as_utc(value)
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"'{key}' is not an ISO-8601 datetime: {value!r}")


def validate_fields(data, partial=False):
    """Validate a create (partial=False) or update (partial=True) payload.

    Returns a dict of clean column values. Counters, status and unknown keys
    are rejected.
    """
    if not isinstance(data, dict):
        raise ValidationError("No data provided")

    forbidden = sorted(k for k in data if k not in EDITABLE_FIELDS)
    if forbidden:
        raise ValidationError(f"Fields cannot be edited: {', '.join(forbidden)}", fields=forbidden)

    clean = {}
    missing = []
    for key in REQUIRED_FIELDS:
        if key not in data:
            if not partial:
                missing.append(key)
            continue
        value = data[key]
        if not isinstance(value, str) or not value.strip():
            missing.append(key)
        else:
            clean[key] = value.strip() if key != 'content' else value
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)

    if 'template_id' in data:
        template_id = data['template_id']
        clean['template_id'] = str(template_id) if template_id not in (None, '') else None

    if 'segment_filters' in data or not partial:
        segment = SegmentFilter.parse(data.get('segment_filters') or {})
        clean['segment_filters'] = segment.to_dict()

    if 'scheduled_at' in data:
        clean['scheduled_at'] = parse_timestamp(data['scheduled_at'], 'scheduled_at')

    return clean


@dataclass
class Campaign:
    id: int
    name: str
    subject: str
    content: str
    status: CampaignStatus = CampaignStatus.DRAFT
    template_id: Optional[str] = None
    segment_filters: Dict[str, Any] = field(default_factory=dict)
    scheduled_at: Optional[datetime] = None
    total_recipients: int = 0
    sent_count: int = 0
    opened_count: int = 0
    clicked_count: int = 0
    bounced_count: int = 0
    unsubscribed_count: int = 0
    sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            name=row['name'],
            subject=row['subject'],
            content=row['content'],
            status=CampaignStatus(row['status']),
            template_id=row['template_id'],
            segment_filters=json.loads(row['segment_filters'] or '{}'),
            scheduled_at=as_utc(row['scheduled_at']),
            total_recipients=row['total_recipients'],
            sent_count=row['sent_count'],
            opened_count=row['opened_count'],
            clicked_count=row['clicked_count'],
            bounced_count=row['bounced_count'],
            unsubscribed_count=row['unsubscribed_count'],
            sent_at=as_utc(row['sent_at']),
            created_at=as_utc(row['created_at']),
            updated_at=as_utc(row['updated_at']),
        )

    @property
    def segment(self):
        return SegmentFilter.parse(self.segment_filters)

    @property
    def is_editable(self):
        return self.status == CampaignStatus.DRAFT

    def is_due(self, now=None):
        now = now or datetime.now(timezone.utc)
        return (self.status == CampaignStatus.SCHEDULED
                and self.scheduled_at is not None and self.scheduled_at <= now)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'subject': self.subject,
            'content': self.content,
            'status': self.status.value,
            'template_id': self.template_id,
            'segment_filters': self.segment_filters,
            'scheduled_at': _iso(self.scheduled_at),
            'total_recipients': self.total_recipients,
            'sent_count': self.sent_count,
            'opened_count': self.opened_count,
            'clicked_count': self.clicked_count,
            'bounced_count': self.bounced_count,
            'unsubscribed_count': self.unsubscribed_count,
            'sent_at': _iso(self.sent_at),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


@dataclass
class SendRecord:
    id: int
    campaign_id: int
    subscriber_id: int
    email: str
    status: DeliveryStatus = DeliveryStatus.SENT
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    clicked_at: Optional[datetime] = None
    bounced_at: Optional[datetime] = None
    unsubscribed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            campaign_id=row['campaign_id'],
            subscriber_id=row['subscriber_id'],
            email=row['email'],
            status=DeliveryStatus(row['status']),
            error_message=row['error_message'],
            sent_at=as_utc(row['sent_at']),
            opened_at=as_utc(row['opened_at']),
            clicked_at=as_utc(row['clicked_at']),
            bounced_at=as_utc(row['bounced_at']),
            unsubscribed_at=as_utc(row['unsubscribed_at']),
        )

    def event_time(self, kind):
        return getattr(self, EventKind(kind).column)

    def to_dict(self):
        return {
            'id': self.id,
            'campaign_id': self.campaign_id,
            'subscriber_id': self.subscriber_id,
            'email': self.email,
            'status': self.status.value,
            'error_message': self.error_message,
            'sent_at': _iso(self.sent_at),
            'opened_at': _iso(self.opened_at),
            'clicked_at': _iso(self.clicked_at),
            'bounced_at': _iso(self.bounced_at),
            'unsubscribed_at': _iso(self.unsubscribed_at),
        }
