"""
Campaigns Module
================

Provides:
- Campaign CRUD with a draft/scheduled/sending/paused/sent/cancelled lifecycle
- Subscriber segmentation (status, interests, subscribe-date bounds)
- Sending through an injected mailer, one send record per recipient
- Delivery event tracking (opened, clicked, bounced, unsubscribed)
- Rate metrics (open, click, click-to-open, bounce, unsubscribe)
- CLI: `flask campaigns send-due`, `flask campaigns resume <id>`
"""

from flask import Blueprint

campaigns_bp = Blueprint(
    'campaigns',
    __name__,
    url_prefix='/admin/campaigns',
)

from . import routes  # noqa: E402,F401
from .errors import (  # noqa: E402
    CampaignError, ValidationError, NotFoundError, InvalidStateTransitionError,
    AlreadySendingError, NoEligibleRecipientsError, PartialDeliveryFailure,
)
from .service import CampaignService  # noqa: E402

__all__ = [
    'campaigns_bp', 'CampaignService', 'CampaignError', 'ValidationError', 'NotFoundError',
    'InvalidStateTransitionError', 'AlreadySendingError', 'NoEligibleRecipientsError',
    'PartialDeliveryFailure',
]
