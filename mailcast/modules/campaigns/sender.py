"""
Campaign Sender
===============

Drives a campaign from draft/scheduled to sent:

1. load the campaign, reject anything not draft/scheduled
2. resolve recipients from the stored segment filter
3. conditionally move to 'sending' and stamp the recipient snapshot
   (exactly one concurrent caller wins this UPDATE)
4. create one send record per recipient
5. hand the recipients to the mailer in batches
6. move to 'sent' with sent_count = delivered records

Per-recipient failures are written to the send records. If nobody at all
was delivered, PartialDeliveryFailure is raised after the campaign is closed.

Any other exception out of the mailer stops the run: undelivered records are
marked 'skipped', the campaign stays 'sending' and the exception propagates.
``resume`` picks those records up again.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from mailcast.core import db_log

from .errors import (
    AlreadySendingError, CampaignError, InvalidStateTransitionError,
    NoEligibleRecipientsError, NotFoundError, PartialDeliveryFailure,
)
from .mailer import DeliveryOutcome, MailerError
from .models import SENDABLE, CampaignStatus, DeliveryStatus
from .renderer import add_utm_params

logger = logging.getLogger(__name__)


def _db_log(level, message, details=None):
    db_log(level, 'campaigns', message, details)


@dataclass
class SendReport:
    campaign_id: int
    recipient_count: int
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    failures: List[dict] = field(default_factory=list)
    status: CampaignStatus = CampaignStatus.SENDING

    @property
    def delivery_failure(self) -> Optional[PartialDeliveryFailure]:
        if not self.failed:
            return None
        return PartialDeliveryFailure(
            f"{self.failed} of {self.recipient_count} recipients were not delivered",
            campaign_id=self.campaign_id,
            failed=self.failed,
            recipient_count=self.recipient_count,
            failures=self.failures,
        )

    def to_dict(self):
        return {
            'campaign_id': self.campaign_id,
            'status': self.status.value,
            'recipient_count': self.recipient_count,
            'sent': self.sent,
            'failed': self.failed,
            'skipped': self.skipped,
            'failures': self.failures,
        }


class SendOrchestrator:

    def __init__(self, store, engine, mailer, batch_size=50):
        self.store = store
        self.engine = engine
        self.mailer = mailer
        self.batch_size = max(1, int(batch_size))

    def send(self, campaign_id) -> SendReport:
        campaign = self.store.get(campaign_id)
        if campaign.status not in SENDABLE:
            raise InvalidStateTransitionError(
                "Campaign has already been sent or is not in draft status",
                campaign_id=campaign_id, status=campaign.status.value)

        recipients = self.engine.resolve_recipients(campaign.segment)

        started_at = datetime.now(timezone.utc)
        won = self.store.transition(
            campaign_id, SENDABLE, CampaignStatus.SENDING,
            total_recipients=len(recipients), sent_at=started_at)
        if not won:
            self._raise_lost_race(campaign_id)

        logger.info(f"Campaign {campaign_id} sending to {len(recipients)} recipients")
        _db_log('info', 'Campaign sending started', {
            'campaign_id': campaign_id, 'recipients': len(recipients)
        })

        self.store.create_sends(campaign_id, recipients, sent_at=started_at)
        return self._deliver(campaign, recipients, len(recipients))

    def resume(self, campaign_id) -> SendReport:
        """Finish a campaign left in 'sending' (e.g. after a crash).

        Recipients without a send record are created and mailed, and records
        left 'skipped' by an interrupted run are mailed again.
        """
        campaign = self.store.get(campaign_id)
        if campaign.status != CampaignStatus.SENDING:
            raise InvalidStateTransitionError(
                "Only a campaign that is still sending can be resumed",
                campaign_id=campaign_id, status=campaign.status.value)

        try:
            recipients = self.engine.resolve_recipients(campaign.segment)
        except NoEligibleRecipientsError:
            recipients = []

        existing = self.store.send_subscriber_ids(campaign_id)
        interrupted = self.store.send_subscriber_ids(campaign_id, status=DeliveryStatus.SKIPPED)
        created = set(self.store.create_sends(
            campaign_id, [r for r in recipients if r.id not in existing]))
        retry = [r.id for r in recipients if r.id in interrupted]
        self.store.mark_sends(campaign_id, retry, DeliveryStatus.SENT)
        pending = [r for r in recipients if r.id in created or r.id in interrupted]

        logger.info(f"Resuming campaign {campaign_id}: {len(existing)} records found, "
                    f"{len(pending)} recipients left")
        _db_log('info', 'Campaign send resumed', {
            'campaign_id': campaign_id, 'existing': len(existing), 'pending': len(pending)
        })
        return self._deliver(campaign, pending, len(existing) + len(created))

    def send_due(self, now=None):
        """Send every scheduled campaign whose time has come.

        Errors are collected per campaign; one failure does not stop the sweep.
        """
        reports, errors = [], {}
        for campaign in self.store.due_campaigns(now):
            try:
                reports.append(self.send(campaign.id))
            except CampaignError as e:
                logger.error(f"Scheduled send of campaign {campaign.id} failed: {e}")
                _db_log('error', 'Scheduled send failed', {
                    'campaign_id': campaign.id, 'error': str(e)
                })
                errors[campaign.id] = e
        return reports, errors

    def _raise_lost_race(self, campaign_id):
        current = self.store.find(campaign_id)
        if current is None:
            raise NotFoundError(f"Campaign {campaign_id} not found", campaign_id=campaign_id)
        if current.status in (CampaignStatus.SENDING, CampaignStatus.SENT, CampaignStatus.PAUSED):
            logger.info(f"Campaign {campaign_id} is already being sent by another request")
            raise AlreadySendingError(
                "Campaign is already being sent", campaign_id=campaign_id,
                status=current.status.value)
        raise InvalidStateTransitionError(
            f"Campaign moved to '{current.status.value}' before sending began",
            campaign_id=campaign_id, status=current.status.value)

    def _batches(self, recipients):
        for start in range(0, len(recipients), self.batch_size):
            yield recipients[start:start + self.batch_size]

    def _deliver(self, campaign, recipients, recipient_count) -> SendReport:
        report = SendReport(campaign_id=campaign.id, recipient_count=recipient_count)
        body_template = add_utm_params(campaign.content, campaign.name)

        for index, batch in enumerate(self._batches(recipients)):
            if index and self._was_paused(campaign.id):
                remaining = recipients[index * self.batch_size:]
                self.store.mark_sends(campaign.id, [r.id for r in remaining],
                                      DeliveryStatus.SKIPPED, 'Campaign paused before delivery')
                report.skipped = len(remaining)
                report.status = CampaignStatus.PAUSED
                logger.warning(f"Campaign {campaign.id} paused with {len(remaining)} recipients left")
                _db_log('warning', 'Campaign paused mid-send', {
                    'campaign_id': campaign.id, 'skipped': len(remaining)
                })
                return report
            try:
                self._send_batch(campaign, batch, body_template, report)
            except Exception as e:
                remaining = recipients[index * self.batch_size:]
                self.store.mark_sends(campaign.id, [r.id for r in remaining],
                                      DeliveryStatus.SKIPPED, f'Delivery interrupted: {e}')
                logger.error(f"Campaign {campaign.id} interrupted with {len(remaining)} "
                             f"recipients left: {e}", exc_info=True)
                _db_log('error', 'Campaign delivery interrupted', {
                    'campaign_id': campaign.id, 'skipped': len(remaining), 'error': str(e)
                })
                raise

        if self.store.complete(campaign.id):
            report.status = CampaignStatus.SENT
        else:
            report.status = self.store.get(campaign.id).status

        logger.info(f"Campaign {campaign.id} sent: {report.sent} succeeded, {report.failed} failed")
        _db_log('info', 'Campaign blast sent', {
            'campaign_id': campaign.id, 'sent': report.sent, 'failed': report.failed
        })

        if report.failed:
            failure = report.delivery_failure
            logger.warning(f"Campaign {campaign.id}: {failure}")
            if not report.sent:
                _db_log('error', 'Campaign delivery failed for every recipient', {
                    'campaign_id': campaign.id, 'failed': report.failed
                })
                raise failure
        return report

    def _send_batch(self, campaign, batch, body_template, report):
        try:
            outcomes = self.mailer.send_batch(batch, campaign.subject, body_template)
        except MailerError as e:
            logger.error(f"Mailer failed for a batch of campaign {campaign.id}: {e}")
            outcomes = [DeliveryOutcome(s.id, False, str(e)) for s in batch]

        by_recipient = {o.recipient_id: o for o in outcomes}
        failed_by_error = {}
        for subscriber in batch:
            outcome = by_recipient.get(subscriber.id) or DeliveryOutcome(
                subscriber.id, False, 'No delivery outcome reported')
            if outcome.success:
                report.sent += 1
                continue
            error = outcome.error or 'Provider returned failure'
            report.failed += 1
            report.failures.append({
                'subscriber_id': subscriber.id, 'email': subscriber.email, 'error': error
            })
            failed_by_error.setdefault(error, []).append(subscriber.id)

        for error, subscriber_ids in failed_by_error.items():
            self.store.mark_sends(campaign.id, subscriber_ids, DeliveryStatus.FAILED, error)

    def _was_paused(self, campaign_id):
        return self.store.get(campaign_id).status != CampaignStatus.SENDING
