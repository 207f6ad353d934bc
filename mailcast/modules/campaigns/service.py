"""
Campaign Service
================

Admin-facing operations over campaigns. Routes, CLI commands and host apps
call this; it wires the store, segmentation engine, sender, tracker and
analytics together.
"""

import logging
from datetime import datetime, timezone

from mailcast.core import db_log

from .analytics import AnalyticsAggregator
from .errors import InvalidStateTransitionError, ValidationError
from .models import (
    DELETABLE, CampaignStatus, DeliveryStatus, ensure_transition, parse_timestamp, validate_fields,
)
from .segments import SegmentationEngine, SegmentFilter
from .sender import SendOrchestrator
from .store import CampaignStore
from .tracking import DeliveryTracker

logger = logging.getLogger(__name__)


def _db_log(level, message, details=None):
    db_log(level, 'campaigns', message, details)


class CampaignService:

    def __init__(self, store, directory, mailer, batch_size=50):
        self.store = store
        self.directory = directory
        self.mailer = mailer
        self.engine = SegmentationEngine(directory)
        self.sender = SendOrchestrator(store, self.engine, mailer, batch_size=batch_size)
        self.tracker = DeliveryTracker(store)
        self.analytics = AnalyticsAggregator(store)

    @classmethod
    def from_paths(cls, campaigns_db, directory, mailer, batch_size=50):
        store = CampaignStore(campaigns_db)
        store.init_db()
        return cls(store, directory, mailer, batch_size=batch_size)

    # ===================
    # CRUD
    # ===================

    def create(self, data):
        campaign = self.store.create(validate_fields(data))
        logger.info(f"Saved campaign {campaign.id}: {campaign.name}")
        _db_log('info', f'Campaign created: {campaign.name}', {'id': campaign.id})
        return campaign

    def get(self, campaign_id):
        return self.store.get(campaign_id)

    def list(self, status=None, limit=50, offset=0):
        if status is not None:
            try:
                status = CampaignStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown campaign status: {status!r}")
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        return self.store.list(status=status, limit=limit, offset=offset)

    def update(self, campaign_id, data):
        campaign = self.store.get(campaign_id)
        if not campaign.is_editable:
            raise InvalidStateTransitionError(
                f"Only draft campaigns can be edited (status is '{campaign.status.value}')",
                campaign_id=campaign_id, status=campaign.status.value)

        fields = validate_fields(data, partial=True)
        if not self.store.update_draft(campaign_id, fields):
            current = self.store.get(campaign_id)
            raise InvalidStateTransitionError(
                f"Campaign left draft before the edit was saved (status is '{current.status.value}')",
                campaign_id=campaign_id, status=current.status.value)

        logger.info(f"Updated campaign {campaign_id}: {sorted(fields)}")
        return self.store.get(campaign_id)

    def delete(self, campaign_id):
        if not self.store.delete_if(campaign_id, DELETABLE):
            campaign = self.store.get(campaign_id)
            raise InvalidStateTransitionError(
                "Cannot delete a campaign that has been sent or is currently sending",
                campaign_id=campaign_id, status=campaign.status.value)
        logger.info(f"Deleted campaign {campaign_id}")
        _db_log('info', 'Campaign deleted', {'id': campaign_id})

    # ===================
    # LIFECYCLE
    # ===================

    def _move(self, campaign_id, target, **columns):
        campaign = self.store.get(campaign_id)
        ensure_transition(campaign, target)
        if not self.store.transition(campaign_id, [campaign.status], target, **columns):
            current = self.store.get(campaign_id)
            raise InvalidStateTransitionError(
                f"Campaign changed to '{current.status.value}' concurrently",
                campaign_id=campaign_id, status=current.status.value)
        logger.info(f"Campaign {campaign_id}: {campaign.status.value} -> {target.value}")
        _db_log('info', f'Campaign {target.value}', {'id': campaign_id})
        return self.store.get(campaign_id)

    def schedule(self, campaign_id, send_at=None, now=None):
        """draft -> scheduled. The send time must lie in the future."""
        campaign = self.store.get(campaign_id)
        ensure_transition(campaign, CampaignStatus.SCHEDULED)

        when = parse_timestamp(send_at, 'scheduled_at') or campaign.scheduled_at
        if when is None:
            raise ValidationError("A send time is required to schedule a campaign")
        if when <= (now or datetime.now(timezone.utc)):
            raise ValidationError("Scheduled send time must be in the future",
                                  scheduled_at=when.isoformat())
        return self._move(campaign_id, CampaignStatus.SCHEDULED, scheduled_at=when)

    def cancel(self, campaign_id):
        return self._move(campaign_id, CampaignStatus.CANCELLED)

    def pause(self, campaign_id):
        return self._move(campaign_id, CampaignStatus.PAUSED)

    def send(self, campaign_id):
        return self.sender.send(campaign_id)

    def resume(self, campaign_id):
        return self.sender.resume(campaign_id)

    def send_due(self, now=None):
        return self.sender.send_due(now)

    # ===================
    # TRACKING & ANALYTICS
    # ===================

    def get_sends(self, campaign_id, status=None):
        self.store.get(campaign_id)
        if status is not None:
            try:
                status = DeliveryStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown delivery status: {status!r}")
        return self.store.get_sends(campaign_id, status=status)

    def record_event(self, send_id, kind, timestamp=None):
        return self.tracker.record_event(send_id, kind, timestamp)

    def rates(self, campaign_id):
        return self.analytics.compute_rates(campaign_id)

    def report(self, campaign_id):
        return self.analytics.campaign_report(campaign_id)

    def preview_segment(self, filters):
        segment = SegmentFilter.parse(filters)
        return {
            'count': self.engine.preview(segment),
            'filter': segment.to_dict(),
            'ignored_keys': sorted(segment.extra),
        }
