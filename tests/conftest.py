import base64
import os
import pathlib
import sys
from io import BytesIO

import pytest
from PIL import Image

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from certcat.app import create_app, db
from certcat.shared.resources import ResourceFetchError


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "slow" in item.keywords or "quarantine" in item.keywords:
            continue
        item.add_marker("full")
        if "no_smoke" in item.keywords:
            continue
        item.add_marker("smoke")


def png_bytes(size=(40, 20), color=(200, 30, 30)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def png_data_url(size=(40, 20), color=(200, 30, 30)) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes(size, color)).decode()


class OfflineFetch:
    """Serves registered URLs and fails every other request."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.requested = []

    def __call__(self, url, timeout=None):
        self.requested.append(url)
        if url in self.responses:
            return self.responses[url]
        raise ResourceFetchError(f"offline: {url}")


@pytest.fixture
def offline_fetch():
    return OfflineFetch()


@pytest.fixture
def app(tmp_path, monkeypatch):
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    os.environ["SITE_ROOT"] = str(tmp_path)
    os.environ["APP_BASE_URL"] = "https://certs.example.com"
    os.environ["EMAIL_SEND_DELAY"] = "0"
    os.environ["ADMIN_EMAILS"] = "admin@example.com"
    for key in ("SMTP_HOST", "SMTP_PORT", "SMTP_FROM_DEFAULT", "SMTP_USER", "SMTP_PASS"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("certcat.services.certificates.fetch_bytes", OfflineFetch())
    application = create_app()
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, uid="owner-1", email="owner@example.com"):
    with client.session_transaction() as sess:
        sess["owner_uid"] = uid
        sess["owner_email"] = email
