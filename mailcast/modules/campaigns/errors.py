"""
Campaign Errors
===============

Every error an admin-facing campaign operation can reject with. Each carries
the HTTP status the JSON API answers with.
"""


class CampaignError(Exception):
    status_code = 400

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {'error': self.message, 'code': type(self).__name__}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(CampaignError):
    """Malformed campaign fields or segment filter; nothing was changed"""
    status_code = 400


class NotFoundError(CampaignError):
    """Unknown campaign or send record id"""
    status_code = 404


class InvalidStateTransitionError(CampaignError):
    """The campaign's current status does not permit the operation"""
    status_code = 409


class AlreadySendingError(CampaignError):
    """Another request won the transition to 'sending'. Do not retry."""
    status_code = 409


class NoEligibleRecipientsError(CampaignError):
    """The segment filter matched nobody; the campaign was left unchanged"""
    status_code = 400


class PartialDeliveryFailure(CampaignError):
    """The mailer reported per-recipient failures.

    Normally reported on the SendReport, and raised only when no recipient
    at all was delivered.
    """
    status_code = 502

    def __init__(self, message, campaign_id=None, failed=0, recipient_count=0, failures=None):
        super().__init__(message, campaign_id=campaign_id, failed=failed,
                         recipient_count=recipient_count)
        self.campaign_id = campaign_id
        self.failed = failed
        self.recipient_count = recipient_count
        self.failures = failures or []
