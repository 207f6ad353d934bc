"""
Campaign Renderer
=================

Turns a campaign's subject and body template into the message for one
recipient: placeholder substitution and a minimal HTML wrapper with an
unsubscribe footer. UTM tagging is applied once to the campaign template
before it reaches the mailer.

Placeholders:
    {{first_name}} {{last_name}} {{email}} {{unsubscribe_url}}
Unknown placeholders are left untouched.
"""

import html
import re
from urllib.parse import quote

from flask import current_app

PLACEHOLDER = re.compile(r'\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}')


def _get_brand():
    """Get brand info from app config"""
    try:
        return {
            'name': current_app.config.get('EMAIL_BRAND_NAME', 'Newsletter'),
            'url': current_app.config.get('EMAIL_WEBSITE_URL', '#'),
        }
    except RuntimeError:
        return {'name': 'Newsletter', 'url': '#'}


def resolve_variables(subscriber, website_url=None):
    """Build the placeholder values for a specific recipient"""
    website_url = website_url if website_url is not None else _get_brand()['url']
    return {
        'first_name': subscriber.first_name or '',
        'last_name': subscriber.last_name or '',
        'email': subscriber.email,
        'unsubscribe_url': f"{website_url.rstrip('/')}/unsubscribe?email={quote(subscriber.email)}",
    }


def substitute_variables(text, variables):
    """Replace {{var}} placeholders with actual values"""
    if not text:
        return text

    def _replace(match):
        key = match.group(1)
        if key in variables:
            return str(variables[key])
        return match.group(0)

    return PLACEHOLDER.sub(_replace, text)


def add_utm_params(body, campaign_name):
    """Auto-tag href URLs with UTM parameters for campaign tracking"""
    if not campaign_name:
        return body
    slug = re.sub(r'[^a-z0-9]+', '-', campaign_name.lower()).strip('-')

    def _tag_url(match):
        url = match.group(1)
        # Skip mailto:, tel:, anchor-only, placeholder and unsubscribe links
        if url.startswith(('mailto:', 'tel:', '#', '{{')) or '/unsubscribe' in url:
            return match.group(0)
        separator = '&' if '?' in url else '?'
        return f'href="{url}{separator}utm_source=campaign&utm_medium=email&utm_campaign={slug}"'

    return re.sub(r'href="([^"]+)"', _tag_url, body)


def render_message(subscriber, subject, body_template, website_url=None):
    """Render (subject, html) for one recipient"""
    brand = _get_brand()
    variables = resolve_variables(subscriber, website_url)

    rendered_subject = substitute_variables(subject, variables)
    body = substitute_variables(body_template, variables)

    message = f'''<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <title>{html.escape(rendered_subject)}</title>
</head>
<body>
    {body}
    <hr>
    <p style="font-size:12px;color:#666;">
        You're receiving this email because you subscribed to {html.escape(brand['name'])}.
        <a href="{variables['unsubscribe_url']}">Unsubscribe</a>
    </p>
</body>
</html>'''
    return rendered_subject, message
