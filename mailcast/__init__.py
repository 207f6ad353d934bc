"""
Mailcast - Email Campaigns for Flask
====================================

Newsletter campaign management as a Flask extension:
- Campaign lifecycle (draft, scheduled, sending, paused, sent, cancelled)
- Subscriber segmentation
- Batched sending through a pluggable mailer
- Open/click/bounce/unsubscribe tracking and rate analytics

Usage:
    from mailcast import Mailcast

    app = Flask(__name__)
    app.config['DB_DIR'] = '/data/databases'
    Mailcast(app)

    # or with an application factory
    mailcast = Mailcast()
    mailcast.init_app(app, mailer=my_mailer)
"""

import logging
import os

from flask_cors import CORS

__version__ = '0.1.0'
__author__ = 'Laurence Stephan'

from .core import Config, Database
from .modules.campaigns import CampaignService, campaigns_bp
from .modules.campaigns.mailer import build_mailer
from .modules.subscribers import SubscriberDirectory, init_subscribers_db

logger = logging.getLogger(__name__)


def get_allowed_origins(config):
    """Origins allowed to call the admin API (list or comma-separated CAMPAIGN_CORS_ORIGINS)"""
    origins = config.get('CAMPAIGN_CORS_ORIGINS') or '*'
    if isinstance(origins, str):
        origins = origins.split(',')
    return [o.strip() for o in origins if o.strip()] or '*'


class Mailcast:
    """Flask extension wiring the subscriber directory, mailer and campaign service"""

    def __init__(self, app=None, config=None, mailer=None, directory=None):
        self.config = config or {}
        self.app = None
        self.campaigns = None
        self.directory = directory
        self.mailer = mailer
        self._registered = []

        if app is not None:
            self.init_app(app, mailer=mailer, directory=directory)

    def init_app(self, app, mailer=None, directory=None):
        """Initialize Mailcast with a Flask app"""
        # INTEGRATION: values already on app.config win over Config defaults.
        # Set DB paths and MAILER_PROVIDER before calling init_app.
        for key, value in self.config.items():
            app.config.setdefault(key, value)
        if app.config.get('DB_DIR'):
            # Derive each unset DB path from an app-provided DB_DIR
            db_dir = app.config['DB_DIR']
            app.config.setdefault('CAMPAIGNS_DB', os.path.join(db_dir, 'campaigns.db'))
            app.config.setdefault('USER_DB', os.path.join(db_dir, 'users.db'))
            app.config.setdefault('ANALYTICS_DB', os.path.join(db_dir, 'analytics_log.db'))
        for key, value in Config.defaults().items():
            app.config.setdefault(key, value)

        for key in ('CAMPAIGNS_DB', 'USER_DB', 'ANALYTICS_DB'):
            Database.ensure_dir(app.config[key])

        self.app = app
        self.directory = directory or self.directory
        if self.directory is None:
            init_subscribers_db(app.config['USER_DB'])
            self.directory = SubscriberDirectory(app.config['USER_DB'])

        self.mailer = mailer or self.mailer or build_mailer(app.config)
        self.campaigns = CampaignService.from_paths(
            app.config['CAMPAIGNS_DB'],
            self.directory,
            self.mailer,
            batch_size=app.config.get('CAMPAIGN_BATCH_SIZE', 50),
        )

        app.register_blueprint(campaigns_bp)
        CORS(app, resources={
            rf"{campaigns_bp.url_prefix}/.*": {'origins': get_allowed_origins(app.config)}
        })
        self._registered = ['campaigns']

        app.extensions = getattr(app, 'extensions', {})
        app.extensions['mailcast'] = self

        logger.info(f"Mailcast initialised (mailer: {type(self.mailer).__name__}, "
                    f"campaigns db: {app.config['CAMPAIGNS_DB']})")

    def get_registered_modules(self):
        """Names of the blueprint modules registered on the app"""
        return list(self._registered)


__all__ = ['Mailcast', '__version__']
