"""
Shared fixtures for the Mailcast test suite.

Run with: pytest tests/ -v
Install test dependencies with: pip install -e ".[dev]"
"""

import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone

import pytest
from flask import Flask

from mailcast import Mailcast
from mailcast.core import Config
from mailcast.modules.campaigns import CampaignService
from mailcast.modules.campaigns.mailer import LogMailer
from mailcast.modules.campaigns.store import CampaignStore
from mailcast.modules.subscribers import SubscriberDirectory, init_subscribers_db

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Databases
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_db_dir():
    """Create a temporary directory for test databases, cleaned up after."""
    d = tempfile.mkdtemp(prefix="mailcast-test-")
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture(autouse=True)
def isolated_log_db(tmp_db_dir, monkeypatch):
    """Keep db_log() writes made outside an app context in the temp dir."""
    path = os.path.join(tmp_db_dir, "analytics.db")
    monkeypatch.setattr(Config, "ANALYTICS_DB", path)
    return path


@pytest.fixture
def directory(tmp_db_dir):
    path = os.path.join(tmp_db_dir, "users.db")
    init_subscribers_db(path)
    return SubscriberDirectory(path)


@pytest.fixture
def store(tmp_db_dir):
    store = CampaignStore(os.path.join(tmp_db_dir, "campaigns.db"))
    store.init_db()
    return store


@pytest.fixture
def mailer():
    return LogMailer(website_url="https://example.com")


@pytest.fixture
def service(store, directory, mailer):
    return CampaignService(store, directory, mailer, batch_size=2)


@pytest.fixture
def seed(directory):
    """seed(n, **kwargs) adds n subscribers and returns their ids."""
    counter = {"n": 0}

    def _seed(n=1, interests=None, status="subscribed", subscribed_at=None):
        ids = []
        for _ in range(n):
            counter["n"] += 1
            i = counter["n"]
            ids.append(directory.add(
                f"reader{i}@example.com",
                first_name=f"Reader{i}",
                status=status,
                interests=interests,
                subscribed_at=subscribed_at or BASE_TIME + timedelta(minutes=i),
            ))
        return ids

    return _seed


@pytest.fixture
def make_campaign(service):
    def _make(**overrides):
        data = {
            "name": "March Newsletter",
            "subject": "Hello {{first_name}}",
            "content": "<p>Hi {{first_name}}, read <a href=\"https://example.com/news\">the news</a>.</p>",
        }
        data.update(overrides)
        return service.create(data)

    return _make


# ---------------------------------------------------------------------------
# Flask app
# ---------------------------------------------------------------------------

@pytest.fixture
def app(tmp_db_dir):
    """Flask app with Mailcast registered and a log mailer."""
    app = Flask(__name__)
    app.config["TESTING"] = True
    app.config["SECRET_KEY"] = "test-secret"
    app.config["DB_DIR"] = tmp_db_dir
    app.config["CAMPAIGNS_DB"] = os.path.join(tmp_db_dir, "campaigns.db")
    app.config["USER_DB"] = os.path.join(tmp_db_dir, "users.db")
    app.config["ANALYTICS_DB"] = os.path.join(tmp_db_dir, "analytics.db")
    app.config["MAILER_PROVIDER"] = "log"
    app.config["CAMPAIGN_BATCH_SIZE"] = 2
    Mailcast(app)
    return app


@pytest.fixture
def client(app):
    return app.test_client()
