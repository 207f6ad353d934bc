"""
Mailers and message rendering.
"""

from unittest.mock import patch

import pytest
import requests
import resend

from mailcast.modules.campaigns.mailer import (
    DeliveryOutcome, LogMailer, MailerError, ResendMailer, build_mailer,
)
from mailcast.modules.campaigns.renderer import (
    add_utm_params, render_message, substitute_variables,
)
from mailcast.modules.subscribers import Subscriber

ADA = Subscriber(id=1, email="ada@example.com", first_name="Ada", last_name="Lovelace")
ALAN = Subscriber(id=2, email="alan@example.com", first_name="Alan")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def test_substitute_keeps_unknown_placeholders():
    text = substitute_variables("Hi {{ first_name }}, {{coupon}}", {"first_name": "Ada"})
    assert text == "Hi Ada, {{coupon}}"


def test_utm_tagging_skips_mailto_and_unsubscribe():
    body = ('<a href="https://shop.example.com/?p=1">Shop</a>'
            '<a href="mailto:hi@example.com">Mail</a>'
            '<a href="https://example.com/unsubscribe?email=x">Leave</a>')
    tagged = add_utm_params(body, "Spring Sale!")

    assert 'href="https://shop.example.com/?p=1&utm_source=campaign&utm_medium=email&utm_campaign=spring-sale"' in tagged
    assert 'href="mailto:hi@example.com"' in tagged
    assert 'href="https://example.com/unsubscribe?email=x"' in tagged


def test_render_message_personalises_subject_and_body():
    subject, html = render_message(
        ADA, "News for {{first_name}}", "<p>Dear {{first_name}} {{last_name}}</p>",
        website_url="https://example.com/")

    assert subject == "News for Ada"
    assert "<p>Dear Ada Lovelace</p>" in html
    assert 'href="https://example.com/unsubscribe?email=ada%40example.com"' in html


# ---------------------------------------------------------------------------
# Log mailer
# ---------------------------------------------------------------------------

def test_log_mailer_reports_every_recipient():
    mailer = LogMailer(website_url="https://example.com")
    outcomes = mailer.send_batch([ADA, ALAN], "Hello {{first_name}}", "<p>Hi</p>")

    assert outcomes == [DeliveryOutcome(1, True), DeliveryOutcome(2, True)]
    assert [m[1] for m in mailer.sent] == ["Hello Ada", "Hello Alan"]


# ---------------------------------------------------------------------------
# Resend mailer
# ---------------------------------------------------------------------------

@patch("resend.Emails.send")
def test_resend_sends_one_message_per_recipient(mock_send):
    mock_send.return_value = {"id": "email_123"}
    mailer = ResendMailer("re_key", "news@example.com", website_url="https://example.com")

    outcomes = mailer.send_batch([ADA, ALAN], "Hi", "<p>Body</p>")

    assert all(o.success for o in outcomes)
    assert mock_send.call_count == 2
    params = mock_send.call_args_list[0][0][0]
    assert params["to"] == "ada@example.com"
    assert params["from"] == "news@example.com"
    assert params["subject"] == "Hi"
    assert resend.api_key == "re_key"


@patch("resend.Emails.send")
def test_resend_network_error_does_not_stop_batch(mock_send):
    mock_send.side_effect = [requests.ConnectionError("connection refused"), {"id": "email_456"}]
    mailer = ResendMailer("re_key", "news@example.com")

    outcomes = mailer.send_batch([ADA, ALAN], "Hi", "<p>Body</p>")

    assert not outcomes[0].success
    assert "connection refused" in outcomes[0].error
    assert outcomes[1].success


@patch("resend.Emails.send")
def test_resend_deliver_raises_mailer_error(mock_send):
    mock_send.side_effect = requests.Timeout("read timed out")
    mailer = ResendMailer("re_key", "news@example.com")

    with pytest.raises(MailerError, match="read timed out"):
        mailer.deliver("ada@example.com", "Hi", "<p>Body</p>")


@patch("resend.Emails.send")
def test_resend_without_api_key_fails_without_calling_api(mock_send):
    mailer = ResendMailer(None, "news@example.com")

    assert mailer.deliver("ada@example.com", "Hi", "<p>Body</p>") is False
    mock_send.assert_not_called()


@patch("resend.Emails.send")
def test_resend_response_without_id_is_a_failure(mock_send):
    mock_send.return_value = {}
    mailer = ResendMailer("re_key", "news@example.com")

    assert mailer.deliver("ada@example.com", "Hi", "<p>Body</p>") is False
    outcomes = mailer.send_batch([ADA], "Hi", "<p>Body</p>")
    assert outcomes == [DeliveryOutcome(1, False, "Provider returned failure")]


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------

def test_build_mailer_from_config():
    resend_mailer = build_mailer({"MAILER_PROVIDER": "Resend", "RESEND_API_KEY": "re_key",
                                  "EMAIL_ADDRESS": "news@example.com"})
    assert isinstance(resend_mailer, ResendMailer)
    assert resend_mailer.sender_email == "news@example.com"

    assert isinstance(build_mailer({}), LogMailer)

    with pytest.raises(ValueError):
        build_mailer({"MAILER_PROVIDER": "smtp"})
