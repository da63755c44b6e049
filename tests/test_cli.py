import os
import sys
from datetime import datetime, timedelta

import pytest
from PyPDF2 import PdfReader

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from certcat.app import db
from certcat.models import Certificate
from manage import export_cert, purge_expired_tests


@pytest.fixture
def cli_app(app):
    app.cli.add_command(export_cert)
    app.cli.add_command(purge_expired_tests)
    return app


def _add(cert_id, **extra):
    db.session.add(
        Certificate(
            id=cert_id,
            name="Jane Doe",
            event_name="PyCon",
            elements=[{"type": "text", "value": "Jane Doe"}],
            settings={},
            **extra,
        )
    )
    db.session.commit()


def test_purge_expired_tests(cli_app):
    now = datetime.utcnow()
    _add("TEST-OLD", is_test=True, expires_at=now - timedelta(hours=2))
    _add("TEST-NEW", is_test=True, expires_at=now + timedelta(hours=1))
    _add("real")
    runner = cli_app.test_cli_runner()

    res = runner.invoke(args=["purge_expired_tests", "--dry-run"])
    assert "TEST-OLD" in res.output
    assert "expired=1 deleted=0" in res.output
    assert db.session.get(Certificate, "TEST-OLD") is not None

    res = runner.invoke(args=["purge_expired_tests"])
    assert res.exit_code == 0
    assert "expired=1 deleted=1" in res.output
    assert {c.id for c in db.session.query(Certificate).all()} == {"TEST-NEW", "real"}


def test_export_cert_writes_pdf(cli_app, tmp_path):
    _add("real")
    out = tmp_path / "out" / "cert.pdf"
    runner = cli_app.test_cli_runner()
    res = runner.invoke(args=["export_cert", "--id", "real", "--out", str(out)])
    assert res.exit_code == 0
    assert len(PdfReader(str(out)).pages) == 1

    res = runner.invoke(args=["export_cert", "--id", "missing", "--out", str(out)])
    assert "Not found" in res.output
