"""
Sending: recipient snapshot, send records, concurrency, partial failure,
pausing mid-send, resume and the scheduled sweep.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from mailcast.modules.campaigns import CampaignService
from mailcast.modules.campaigns.errors import (
    AlreadySendingError, InvalidStateTransitionError, NoEligibleRecipientsError,
    PartialDeliveryFailure,
)
from mailcast.modules.campaigns.mailer import DeliveryOutcome, LogMailer, Mailer, MailerError
from mailcast.modules.campaigns.models import SENDABLE, CampaignStatus, DeliveryStatus

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class RejectingMailer(Mailer):
    """Fails delivery for the given addresses"""

    def __init__(self, reject=()):
        super().__init__(website_url="https://example.com")
        self.reject = set(reject)
        self.delivered = []

    def deliver(self, email, subject, html):
        if email in self.reject:
            return False
        self.delivered.append(email)
        return True


class ExplodingMailer(Mailer):
    def send_batch(self, recipients, subject, body_template):
        raise MailerError("provider unreachable")


class PlainMailer:
    """Implements only the three-argument send_batch contract"""

    def __init__(self):
        self.calls = []

    def send_batch(self, recipients, subject, body_template):
        self.calls.append((list(recipients), subject, body_template))
        return [DeliveryOutcome(r.id, True) for r in recipients]


class BrokenMailer(Mailer):
    def send_batch(self, recipients, subject, body_template):
        raise TypeError("send_batch() got an unexpected keyword argument")


class MutatingDirectory:
    """Moves the campaign to another status right after recipients are read"""

    def __init__(self, inner, store, campaign_id, to_status):
        self.inner = inner
        self.store = store
        self.campaign_id = campaign_id
        self.to_status = to_status

    def list_eligible(self, segment):
        subscribers = self.inner.list_eligible(segment)
        self.store.transition(self.campaign_id, SENDABLE, self.to_status)
        return subscribers


class BarrierDirectory:
    """Holds every caller of list_eligible until all parties arrive"""

    def __init__(self, inner, parties):
        self.inner = inner
        self.barrier = threading.Barrier(parties)

    def list_eligible(self, segment):
        subscribers = self.inner.list_eligible(segment)
        self.barrier.wait(timeout=10)
        return subscribers


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

def test_send_creates_one_record_per_recipient(service, store, mailer, seed, make_campaign):
    ids = seed(3)
    campaign = make_campaign()

    report = service.send(campaign.id)

    assert report.sent == 3 and report.failed == 0
    assert report.status == CampaignStatus.SENT
    sends = store.get_sends(campaign.id)
    assert sorted(s.subscriber_id for s in sends) == sorted(ids)
    assert all(s.status == DeliveryStatus.SENT for s in sends)

    sent = service.get(campaign.id)
    assert sent.status == CampaignStatus.SENT
    assert sent.sent_count == 3
    assert sent.total_recipients == 3
    assert sent.sent_at is not None
    assert len(mailer.sent) == 3


def test_send_personalises_each_message(service, mailer, seed, make_campaign):
    seed(2)
    service.send(make_campaign().id)

    subjects = sorted(subject for _, subject, _ in mailer.sent)
    assert subjects == ["Hello Reader1", "Hello Reader2"]
    _, _, html = mailer.sent[0]
    assert "utm_campaign=march-newsletter" in html
    assert "https://example.com/unsubscribe?email=reader" in html


def test_send_respects_segment(service, store, seed, make_campaign):
    seed(2, interests=["art"])
    tech = seed(1, interests=["tech"])
    campaign = make_campaign(segment_filters={"interests": ["tech"]})

    service.send(campaign.id)

    assert [s.subscriber_id for s in store.get_sends(campaign.id)] == tech
    assert service.get(campaign.id).total_recipients == 1


def test_send_with_no_matches_leaves_draft(service, store, seed, make_campaign):
    seed(2, interests=["art"])
    campaign = make_campaign(segment_filters={"interests": ["tech"]})

    with pytest.raises(NoEligibleRecipientsError):
        service.send(campaign.id)

    assert service.get(campaign.id).status == CampaignStatus.DRAFT
    assert store.get_sends(campaign.id) == []


def test_sent_campaign_cannot_be_sent_again(service, store, seed, make_campaign):
    seed(2)
    campaign = make_campaign()
    service.send(campaign.id)

    with pytest.raises(InvalidStateTransitionError):
        service.send(campaign.id)
    assert len(store.get_sends(campaign.id)) == 2


def test_concurrent_sends_deliver_once(store, directory, seed, make_campaign):
    seed(3)
    campaign = make_campaign()
    mailer = LogMailer(website_url="https://example.com")
    racing = CampaignService(store, BarrierDirectory(directory, 2), mailer, batch_size=2)

    reports, errors = [], []

    def _send():
        try:
            reports.append(racing.send(campaign.id))
        except Exception as e:  # collected for assertions
            errors.append(e)

    threads = [threading.Thread(target=_send) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert len(reports) == 1
    assert len(errors) == 1 and isinstance(errors[0], AlreadySendingError)
    assert len(store.get_sends(campaign.id)) == 3
    assert len(mailer.sent) == 3
    assert store.get(campaign.id).sent_count == 3


def test_send_rejects_campaign_already_sending(service, store, seed, make_campaign):
    seed(1)
    campaign = make_campaign()
    assert store.transition(campaign.id, SENDABLE, CampaignStatus.SENDING)
    assert not store.transition(campaign.id, SENDABLE, CampaignStatus.SENDING)

    with pytest.raises(InvalidStateTransitionError):
        service.send(campaign.id)


def test_losing_the_transition_to_another_sender(store, directory, mailer, seed, make_campaign):
    seed(2)
    campaign = make_campaign()
    racing = CampaignService(
        store, MutatingDirectory(directory, store, campaign.id, CampaignStatus.SENDING), mailer)

    with pytest.raises(AlreadySendingError) as exc:
        racing.send(campaign.id)

    assert exc.value.details["status"] == "sending"
    assert store.get_sends(campaign.id) == []
    assert mailer.sent == []


def test_losing_the_transition_to_a_cancel(store, directory, mailer, seed, make_campaign):
    seed(2)
    campaign = make_campaign()
    racing = CampaignService(
        store, MutatingDirectory(directory, store, campaign.id, CampaignStatus.CANCELLED), mailer)

    with pytest.raises(InvalidStateTransitionError) as exc:
        racing.send(campaign.id)

    assert not isinstance(exc.value, AlreadySendingError)
    assert exc.value.details["status"] == "cancelled"
    assert store.get(campaign.id).status == CampaignStatus.CANCELLED
    assert mailer.sent == []


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

def test_partial_failure_is_reported_per_recipient(store, directory, seed, make_campaign):
    seed(3)
    campaign = make_campaign()
    mailer = RejectingMailer(reject={"reader2@example.com"})
    service = CampaignService(store, directory, mailer, batch_size=2)

    report = service.send(campaign.id)

    assert report.sent == 2 and report.failed == 1
    assert report.failures[0]["email"] == "reader2@example.com"
    assert isinstance(report.delivery_failure, PartialDeliveryFailure)

    failed = store.get_sends(campaign.id, status=DeliveryStatus.FAILED)
    assert [s.email for s in failed] == ["reader2@example.com"]
    assert failed[0].error_message == "Provider returned failure"

    sent = store.get(campaign.id)
    assert sent.status == CampaignStatus.SENT
    assert sent.sent_count == 2
    assert sent.total_recipients == 3


def test_total_failure_raises_after_closing_campaign(store, directory, seed, make_campaign):
    seed(2)
    campaign = make_campaign()
    service = CampaignService(store, directory, ExplodingMailer(), batch_size=5)

    with pytest.raises(PartialDeliveryFailure) as exc:
        service.send(campaign.id)

    assert exc.value.failed == 2
    assert exc.value.recipient_count == 2
    assert store.get(campaign.id).status == CampaignStatus.SENT
    assert store.get(campaign.id).sent_count == 0
    sends = store.get_sends(campaign.id)
    assert {s.status for s in sends} == {DeliveryStatus.FAILED}
    assert sends[0].error_message == "provider unreachable"


def test_send_calls_mailer_with_three_arguments(store, directory, seed, make_campaign):
    seed(3)
    campaign = make_campaign(content='<p>Read <a href="https://example.com/post">more</a></p>')
    mailer = PlainMailer()
    service = CampaignService(store, directory, mailer, batch_size=2)

    report = service.send(campaign.id)

    assert report.sent == 3 and report.failed == 0
    assert report.status == CampaignStatus.SENT
    assert [len(recipients) for recipients, _, _ in mailer.calls] == [2, 1]
    _, subject, body = mailer.calls[0]
    assert subject == campaign.subject
    assert "utm_campaign=march-newsletter" in body
    assert {s.status for s in store.get_sends(campaign.id)} == {DeliveryStatus.SENT}


def test_programming_error_interrupts_send_and_resume_finishes(store, directory, seed, make_campaign):
    seed(3)
    campaign = make_campaign()
    service = CampaignService(store, directory, BrokenMailer(), batch_size=2)

    with pytest.raises(TypeError):
        service.send(campaign.id)

    assert store.get(campaign.id).status == CampaignStatus.SENDING
    skipped = store.get_sends(campaign.id, status=DeliveryStatus.SKIPPED)
    assert len(skipped) == 3
    assert skipped[0].error_message.startswith("Delivery interrupted")
    assert store.get_sends(campaign.id, status=DeliveryStatus.FAILED) == []

    mailer = LogMailer(website_url="https://example.com")
    service.sender.mailer = mailer
    report = service.resume(campaign.id)

    assert report.sent == 3
    assert report.recipient_count == 3
    assert len(mailer.sent) == 3
    assert {s.status for s in store.get_sends(campaign.id)} == {DeliveryStatus.SENT}
    resumed = store.get(campaign.id)
    assert resumed.status == CampaignStatus.SENT
    assert resumed.sent_count == 3


# ---------------------------------------------------------------------------
# Pause and resume
# ---------------------------------------------------------------------------

def test_pause_mid_send_skips_remaining_batches(store, directory, seed, make_campaign):
    seed(5)
    campaign = make_campaign()

    class PausingMailer(LogMailer):
        def send_batch(self, recipients, subject, body_template):
            outcomes = super().send_batch(recipients, subject, body_template)
            service.pause(campaign.id)
            return outcomes

    mailer = PausingMailer()
    service = CampaignService(store, directory, mailer, batch_size=2)

    report = service.send(campaign.id)

    assert report.status == CampaignStatus.PAUSED
    assert report.sent == 2 and report.skipped == 3
    assert len(mailer.sent) == 2
    assert len(store.get_sends(campaign.id, status=DeliveryStatus.SKIPPED)) == 3
    assert store.get(campaign.id).status == CampaignStatus.PAUSED

    assert service.cancel(campaign.id).status == CampaignStatus.CANCELLED


def test_resume_only_mails_missing_recipients(service, store, mailer, seed, make_campaign):
    ids = seed(3)
    campaign = make_campaign()
    # A crash after the first record was written
    assert store.transition(campaign.id, SENDABLE, CampaignStatus.SENDING, total_recipients=3)
    store.create_sends(campaign.id, [service.directory.get(ids[0])])

    report = service.resume(campaign.id)

    assert report.sent == 2
    assert report.recipient_count == 3
    assert len(mailer.sent) == 2
    assert len(store.get_sends(campaign.id)) == 3
    resumed = store.get(campaign.id)
    assert resumed.status == CampaignStatus.SENT
    assert resumed.sent_count == 3


def test_resume_rejects_campaign_not_sending(service, make_campaign):
    with pytest.raises(InvalidStateTransitionError):
        service.resume(make_campaign().id)


# ---------------------------------------------------------------------------
# Scheduled sweep
# ---------------------------------------------------------------------------

def test_send_due_sends_only_due_campaigns(service, seed, make_campaign):
    seed(2)
    due = make_campaign(name="due")
    later = make_campaign(name="later")
    service.schedule(due.id, NOW + timedelta(minutes=5), now=NOW)
    service.schedule(later.id, NOW + timedelta(days=1), now=NOW)

    reports, errors = service.send_due(now=NOW + timedelta(minutes=10))

    assert [r.campaign_id for r in reports] == [due.id]
    assert errors == {}
    assert service.get(due.id).status == CampaignStatus.SENT
    assert service.get(later.id).status == CampaignStatus.SCHEDULED


def test_send_due_collects_errors_per_campaign(service, seed, make_campaign):
    seed(1, interests=["art"])
    empty = make_campaign(name="empty", segment_filters={"interests": ["tech"]})
    full = make_campaign(name="full")
    service.schedule(empty.id, NOW + timedelta(minutes=1), now=NOW)
    service.schedule(full.id, NOW + timedelta(minutes=2), now=NOW)

    reports, errors = service.send_due(now=NOW + timedelta(hours=1))

    assert [r.campaign_id for r in reports] == [full.id]
    assert isinstance(errors[empty.id], NoEligibleRecipientsError)
    assert service.get(empty.id).status == CampaignStatus.SCHEDULED
