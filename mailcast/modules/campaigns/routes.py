"""
Campaigns Routes
================

JSON admin API for email campaigns, plus CLI commands for the scheduler.
CORS for these routes is configured per app by the Mailcast extension.
Authentication is left to the host app.
"""

import logging
import sqlite3

import click
from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from mailcast.core import db_log

from . import campaigns_bp
from .errors import CampaignError, ValidationError

logger = logging.getLogger(__name__)


def _db_log(level, message, details=None):
    db_log(level, 'campaigns', message, details)


def _get_service():
    return current_app.extensions['mailcast'].campaigns


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError('No data provided')
    return data


# ===================
# ERROR HANDLING
# ===================

@campaigns_bp.errorhandler(CampaignError)
def handle_campaign_error(error):
    logger.info(f"{request.method} {request.path} rejected: {error}")
    return jsonify(error.to_dict()), error.status_code


@campaigns_bp.errorhandler(sqlite3.Error)
def handle_database_error(error):
    logger.error(f"Database error in {request.path}: {error}")
    _db_log('error', 'Database error in campaigns API', {
        'path': request.path, 'error': str(error)
    })
    return jsonify({'error': 'Database error occurred', 'code': 'DatabaseError'}), 500


@campaigns_bp.errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, HTTPException):
        return error
    logger.error(f"Unexpected error in {request.path}: {error}", exc_info=True)
    _db_log('error', 'Unexpected error in campaigns API', {
        'path': request.path, 'error': str(error), 'type': type(error).__name__
    })
    return jsonify({'error': 'Internal server error', 'code': 'InternalError'}), 500


# ===================
# CAMPAIGNS
# ===================

@campaigns_bp.route('/', methods=['GET'])
def list_campaigns():
    """List campaigns, newest first (?status=&limit=&offset=)"""
    limit = request.args.get('limit', 50, type=int)
    offset = request.args.get('offset', 0, type=int)
    campaigns, total = _get_service().list(
        status=request.args.get('status') or None, limit=limit, offset=offset)
    return jsonify({
        'data': [c.to_dict() for c in campaigns],
        'count': total,
        'limit': limit,
        'offset': offset,
    }), 200


@campaigns_bp.route('/', methods=['POST'])
def create_campaign():
    campaign = _get_service().create(_json_body())
    return jsonify({'data': campaign.to_dict(), 'message': 'Campaign created successfully'}), 201


@campaigns_bp.route('/<int:campaign_id>', methods=['GET'])
def get_campaign(campaign_id):
    return jsonify({'data': _get_service().get(campaign_id).to_dict()}), 200


@campaigns_bp.route('/<int:campaign_id>', methods=['PUT'])
def update_campaign(campaign_id):
    campaign = _get_service().update(campaign_id, _json_body())
    return jsonify({'data': campaign.to_dict(), 'message': 'Campaign updated successfully'}), 200


@campaigns_bp.route('/<int:campaign_id>', methods=['DELETE'])
def delete_campaign(campaign_id):
    _get_service().delete(campaign_id)
    return jsonify({'message': 'Campaign deleted successfully'}), 200


# ===================
# LIFECYCLE
# ===================

@campaigns_bp.route('/<int:campaign_id>/schedule', methods=['POST'])
def schedule_campaign(campaign_id):
    data = request.get_json(silent=True) or {}
    campaign = _get_service().schedule(campaign_id, data.get('scheduled_at'))
    return jsonify({'data': campaign.to_dict(), 'message': 'Campaign scheduled'}), 200


@campaigns_bp.route('/<int:campaign_id>/cancel', methods=['POST'])
def cancel_campaign(campaign_id):
    campaign = _get_service().cancel(campaign_id)
    return jsonify({'data': campaign.to_dict(), 'message': 'Campaign cancelled'}), 200


@campaigns_bp.route('/<int:campaign_id>/pause', methods=['POST'])
def pause_campaign(campaign_id):
    campaign = _get_service().pause(campaign_id)
    return jsonify({'data': campaign.to_dict(), 'message': 'Campaign paused'}), 200


@campaigns_bp.route('/<int:campaign_id>/send', methods=['POST'])
def send_campaign(campaign_id):
    """Send campaign to every subscriber its segment filter matches"""
    report = _get_service().send(campaign_id)
    payload = report.to_dict()
    payload['message'] = (f"Campaign sent to {report.sent} subscribers"
                          + (f" ({report.failed} failed)" if report.failed else ''))
    return jsonify(payload), 200


@campaigns_bp.route('/<int:campaign_id>/resume', methods=['POST'])
def resume_campaign(campaign_id):
    report = _get_service().resume(campaign_id)
    return jsonify(report.to_dict()), 200


# ===================
# SENDS, EVENTS & ANALYTICS
# ===================

@campaigns_bp.route('/<int:campaign_id>/sends', methods=['GET'])
def list_sends(campaign_id):
    sends = _get_service().get_sends(campaign_id, status=request.args.get('status') or None)
    return jsonify({'data': [s.to_dict() for s in sends], 'count': len(sends)}), 200


@campaigns_bp.route('/sends/<int:send_id>/events', methods=['POST'])
def record_event(send_id):
    """Record an opened/clicked/bounced/unsubscribed event for one send record"""
    data = _json_body()
    kind = data.get('event') or data.get('kind')
    recorded = _get_service().record_event(send_id, kind, data.get('timestamp'))
    return jsonify({'send_id': send_id, 'event': kind, 'recorded': recorded}), 200


@campaigns_bp.route('/<int:campaign_id>/analytics', methods=['GET'])
def campaign_analytics(campaign_id):
    return jsonify({'data': _get_service().report(campaign_id)}), 200


@campaigns_bp.route('/analytics', methods=['GET'])
def combined_analytics():
    """Aggregate rates across campaigns (?ids=1,2,3)"""
    raw_ids = [i for i in request.args.get('ids', '').split(',') if i.strip()]
    try:
        ids = [int(i) for i in raw_ids]
    except ValueError:
        raise ValidationError("ids must be a comma-separated list of campaign ids")
    if not ids:
        raise ValidationError("At least one campaign id is required")
    metrics = _get_service().analytics.combined_rates(ids)
    return jsonify({'data': dict(metrics.to_dict(), campaign_ids=ids)}), 200


@campaigns_bp.route('/segments/preview', methods=['POST'])
def preview_segment():
    """How many subscribers a segment filter currently matches"""
    data = request.get_json(silent=True) or {}
    return jsonify(_get_service().preview_segment(data.get('segment_filters', data))), 200


# ===================
# CLI
# ===================

@campaigns_bp.cli.command('send-due')
def send_due_command():
    """Send every scheduled campaign whose time has come."""
    reports, errors = _get_service().send_due()
    for report in reports:
        click.echo(f"Campaign {report.campaign_id}: {report.sent} sent, {report.failed} failed")
    for campaign_id, error in errors.items():
        click.echo(f"Campaign {campaign_id}: {error}", err=True)
    if not reports and not errors:
        click.echo("No campaigns due")


@campaigns_bp.cli.command('resume')
@click.argument('campaign_id', type=int)
def resume_command(campaign_id):
    """Finish a campaign interrupted while sending."""
    try:
        report = _get_service().resume(campaign_id)
    except CampaignError as e:
        raise click.ClickException(str(e))
    click.echo(f"Campaign {campaign_id}: {report.sent} sent, {report.failed} failed, "
               f"status {report.status.value}")
