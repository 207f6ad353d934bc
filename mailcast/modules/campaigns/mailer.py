"""
Mailer
======

The capability campaigns use to hand messages to an email provider.

Contract: ``send_batch(recipients, subject, body_template)`` returns one
DeliveryOutcome per recipient. Delivery problems are reported as failed
outcomes; ``MailerError`` is the only exception a mailer raises on purpose,
and it means the whole batch went undelivered.
Subclasses of ``Mailer`` only implement ``deliver(email, subject, html) -> bool``.

Providers (selected via MAILER_PROVIDER):
    'log'     -- writes messages to the log and reports success (development)
    'resend'  -- Resend API via the resend SDK
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import requests
import resend
from resend.exceptions import ResendError

from mailcast.core import db_log

from .renderer import render_message

logger = logging.getLogger(__name__)


def _db_log(level, message, details=None):
    db_log(level, 'mailer', message, details)


class MailerError(Exception):
    """The provider could not be reached or refused the request"""


@dataclass(frozen=True)
class DeliveryOutcome:
    recipient_id: int
    success: bool
    error: Optional[str] = None


class Mailer:
    """Base mailer: renders per recipient and delivers one message at a time"""

    def __init__(self, website_url=None):
        self.website_url = website_url

    def deliver(self, email: str, subject: str, html: str) -> bool:
        raise NotImplementedError

    def send_batch(self, recipients, subject: str, body_template: str) -> List[DeliveryOutcome]:
        outcomes = []
        for subscriber in recipients:
            rendered_subject, html = render_message(
                subscriber, subject, body_template, website_url=self.website_url)
            try:
                delivered = self.deliver(subscriber.email, rendered_subject, html)
            except MailerError as e:
                logger.error(f"Error sending to {subscriber.email}: {e}")
                outcomes.append(DeliveryOutcome(subscriber.id, False, str(e)))
                continue
            if delivered:
                outcomes.append(DeliveryOutcome(subscriber.id, True))
            else:
                outcomes.append(DeliveryOutcome(subscriber.id, False, 'Provider returned failure'))
        return outcomes


class LogMailer(Mailer):
    """Logs every message instead of sending it"""

    def __init__(self, website_url=None):
        super().__init__(website_url)
        self.sent = []

    def deliver(self, email, subject, html):
        logger.info(f"[log mailer] to={email} subject={subject!r} ({len(html)} bytes)")
        self.sent.append((email, subject, html))
        return True


class ResendMailer(Mailer):
    """Delivers through the Resend API"""

    def __init__(self, api_key, sender_email, website_url=None):
        super().__init__(website_url)
        self.api_key = api_key
        self.sender_email = sender_email
        if api_key:
            resend.api_key = api_key

    def deliver(self, email, subject, html):
        if not self.api_key:
            logger.error("Resend API key not configured")
            return False

        email_params = {
            "from": self.sender_email,
            "to": email,
            "subject": subject,
            "html": html,
        }
        try:
            r = resend.Emails.send(email_params)
        except (ResendError, requests.RequestException) as e:
            logger.error(f"Resend error for {email}: {e}")
            _db_log('error', 'Resend delivery failed', {'email': email, 'error': str(e)})
            raise MailerError(str(e)) from e

        if r and r.get('id'):
            logger.debug(f"Email sent successfully to: {email}, ID: {r['id']}")
            return True
        logger.error(f"Resend error for {email}: {r}")
        return False


def build_mailer(config):
    """Create the mailer named by MAILER_PROVIDER"""
    provider = (config.get('MAILER_PROVIDER') or 'log').lower()
    website_url = config.get('EMAIL_WEBSITE_URL')

    if provider == 'resend':
        if not config.get('RESEND_API_KEY'):
            logger.warning("RESEND_API_KEY not configured - campaign delivery will fail")
        return ResendMailer(
            api_key=config.get('RESEND_API_KEY'),
            sender_email=config.get('EMAIL_ADDRESS'),
            website_url=website_url,
        )
    if provider != 'log':
        raise ValueError(f"Unknown MAILER_PROVIDER: {provider!r}")

    logger.info("Using log mailer - campaign emails will not leave this process")
    return LogMailer(website_url=website_url)
