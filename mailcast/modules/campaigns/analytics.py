"""
Campaign Analytics
==================

Rate metrics computed on demand from a snapshot of a campaign's send records.
Nothing here writes or locks.

    open_rate          = opened / sent
    click_rate         = clicked / sent
    click_to_open_rate = clicked / opened
    bounce_rate        = bounced / sent
    unsubscribe_rate   = unsubscribed / sent

Each rate is 0 when its denominator is 0. ``sent`` counts records whose
delivery status is 'sent'. Rates are rounded to two decimals only for display.
"""

from collections import Counter
from dataclasses import dataclass

from .models import DeliveryStatus


def _ratio(numerator, denominator):
    return numerator / denominator if denominator else 0.0


@dataclass(frozen=True)
class RateMetrics:
    sent: int = 0
    opened: int = 0
    clicked: int = 0
    bounced: int = 0
    unsubscribed: int = 0

    @classmethod
    def from_sends(cls, sends):
        """Count events over delivered records only"""
        delivered = [s for s in sends if s.status == DeliveryStatus.SENT]
        return cls(
            sent=len(delivered),
            opened=sum(1 for s in delivered if s.opened_at),
            clicked=sum(1 for s in delivered if s.clicked_at),
            bounced=sum(1 for s in delivered if s.bounced_at),
            unsubscribed=sum(1 for s in delivered if s.unsubscribed_at),
        )

    @classmethod
    def combine(cls, metrics):
        """Aggregate several campaigns from their raw counts"""
        metrics = list(metrics)
        return cls(
            sent=sum(m.sent for m in metrics),
            opened=sum(m.opened for m in metrics),
            clicked=sum(m.clicked for m in metrics),
            bounced=sum(m.bounced for m in metrics),
            unsubscribed=sum(m.unsubscribed for m in metrics),
        )

    @property
    def open_rate(self):
        return _ratio(self.opened, self.sent)

    @property
    def click_rate(self):
        return _ratio(self.clicked, self.sent)

    @property
    def click_to_open_rate(self):
        return _ratio(self.clicked, self.opened)

    @property
    def bounce_rate(self):
        return _ratio(self.bounced, self.sent)

    @property
    def unsubscribe_rate(self):
        return _ratio(self.unsubscribed, self.sent)

    def rates(self, digits=2):
        return {
            'open_rate': round(self.open_rate, digits),
            'click_rate': round(self.click_rate, digits),
            'click_to_open_rate': round(self.click_to_open_rate, digits),
            'bounce_rate': round(self.bounce_rate, digits),
            'unsubscribe_rate': round(self.unsubscribe_rate, digits),
        }

    def to_dict(self):
        return {
            'sent_count': self.sent,
            'opened_count': self.opened,
            'clicked_count': self.clicked,
            'bounced_count': self.bounced,
            'unsubscribed_count': self.unsubscribed,
            'rates': self.rates(),
        }


def hourly_breakdown(sends):
    """Opens per hour of day (UTC)"""
    return dict(sorted(Counter(s.opened_at.hour for s in sends if s.opened_at).items()))


class AnalyticsAggregator:

    def __init__(self, store):
        self.store = store

    def compute_rates(self, campaign_id) -> RateMetrics:
        self.store.get(campaign_id)
        return RateMetrics.from_sends(self.store.get_sends(campaign_id))

    def combined_rates(self, campaign_ids) -> RateMetrics:
        return RateMetrics.combine(self.compute_rates(cid) for cid in campaign_ids)

    def campaign_report(self, campaign_id):
        """Everything the campaign analytics screen shows"""
        campaign = self.store.get(campaign_id)
        sends = self.store.get_sends(campaign_id)
        metrics = RateMetrics.from_sends(sends)
        return {
            'campaign': {
                'id': campaign.id,
                'name': campaign.name,
                'status': campaign.status.value,
                'sent_at': campaign.sent_at.isoformat() if campaign.sent_at else None,
            },
            'overview': {
                'total_recipients': campaign.total_recipients,
                'sent_count': metrics.sent,
                'failed_count': sum(1 for s in sends if s.status == DeliveryStatus.FAILED),
                'opened_count': metrics.opened,
                'clicked_count': metrics.clicked,
                'bounced_count': metrics.bounced,
                'unsubscribed_count': metrics.unsubscribed,
            },
            'rates': metrics.rates(),
            'hourly_breakdown': hourly_breakdown(sends),
        }
