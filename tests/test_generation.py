from datetime import datetime, timedelta

import pytest

from certcat.app import db
from certcat.models import Certificate
from certcat.shared.qr import make_qr_data_url
from conftest import login

TEMPLATE = {
    "imageUrl": "https://img.example.com/bg.png",
    "elements": [
        {"type": "text", "value": "{name}", "x": 50, "y": 45, "fontSize": 48},
        {"type": "text", "value": "for {EVENT} on {date} by {organizer}", "x": 50, "y": 60},
        {"type": "qrcode", "x": 85, "y": 85, "size": 80},
    ],
    "settings": {"outputWidth": 842},
}


@pytest.fixture
def sent(monkeypatch):
    calls = []

    def fake_send(recipients, subject, body, html=None):
        calls.append({"to": recipients, "subject": subject, "body": body, "html": html})
        return {"ok": True, "detail": "sent", "exhausted": False}

    monkeypatch.setattr("certcat.emailer.send", fake_send)
    return calls


def _generate(client, participants, **extra):
    payload = {
        "participants": participants,
        "eventName": "PyCon",
        "organizerName": "PSF",
        "organizerEmail": "events@example.com",
        "templateData": TEMPLATE,
    }
    payload.update(extra)
    return client.post("/api/generate", json=payload)


def test_generate_requires_login(client):
    assert _generate(client, []).status_code == 401


def test_generate_end_to_end(app, client, sent):
    login(client)
    resp = _generate(
        client,
        [
            {"name": " Jane Doe ", "email": "Jane@Example.com"},
            {"name": "", "email": "blank@example.com"},
            {"name": "No Email", "email": "  "},
        ],
        customMessage="Thanks for joining!",
    )
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["success"] is True
    assert data["count"] == 1
    assert data["emails"] == {"sent": 1, "failed": 0, "errors": []}
    assert data["remainingCapacity"] == 500

    cert = db.session.get(Certificate, data["certificateIds"][0])
    assert cert.name == "Jane Doe"
    assert cert.email == "jane@example.com"
    assert cert.verification_url == f"https://certs.example.com/verify/{cert.id}"
    name_el, line_el, qr_el = cert.elements
    assert name_el["value"] == "Jane Doe"
    assert line_el["value"].startswith("for PyCon on ")
    assert line_el["value"].endswith(" by PSF")
    assert qr_el["qrUrl"] == cert.verification_url
    assert qr_el["qrDataUrl"].startswith("data:image/png;base64,")
    assert qr_el["qrDataUrl"] == make_qr_data_url(cert.verification_url)

    assert len(sent) == 1
    assert sent[0]["to"] == "jane@example.com"
    assert sent[0]["subject"] == "Your Certificate for PyCon"
    assert "Thanks for joining!" in sent[0]["html"]
    assert cert.verification_url in sent[0]["body"]


def test_ceiling_mid_batch_keeps_every_certificate(app, client, monkeypatch):
    calls = []

    def fake_send(recipients, subject, body, html=None):
        calls.append(recipients)
        if len(calls) > 2:
            return {"ok": False, "detail": "daily email limit reached", "exhausted": True}
        return {"ok": True, "detail": "sent", "exhausted": False}

    monkeypatch.setattr("certcat.emailer.send", fake_send)
    login(client)
    people = [{"name": f"P{i}", "email": f"p{i}@example.com"} for i in range(5)]
    data = _generate(client, people).get_json()

    assert data["count"] == 5
    assert data["emails"]["sent"] == 2
    assert data["emails"]["failed"] == 1
    assert len(calls) == 3
    assert db.session.query(Certificate).count() == 5


def test_capacity_checked_before_creating_anything(app, client, sent):
    app.config["EMAIL_DAILY_LIMIT"] = 2
    login(client)
    people = [{"name": f"P{i}", "email": f"p{i}@example.com"} for i in range(3)]
    resp = _generate(client, people)
    assert resp.status_code == 429
    data = resp.get_json()
    assert data["success"] is False
    assert "only 2 available" in data["error"]
    assert db.session.query(Certificate).count() == 0
    assert sent == []


def test_missing_event_is_a_bad_request(client, sent):
    login(client)
    resp = _generate(client, [{"name": "A", "email": "a@example.com"}], eventName="")
    assert resp.status_code == 400
    assert resp.get_json() == {"success": False, "error": "Missing required fields"}


def test_generate_from_saved_template(client, sent):
    login(client)
    created = client.post(
        "/templates",
        json={"name": "Default", "imageUrl": TEMPLATE["imageUrl"], "elements": TEMPLATE["elements"]},
    ).get_json()["template"]
    resp = _generate(
        client, [{"name": "Jane Doe", "email": "jane@example.com"}],
        templateData=None, templateId=created["id"],
    )
    data = resp.get_json()
    cert = db.session.get(Certificate, data["certificateIds"][0])
    assert cert.template_id == created["id"]
    assert cert.template_url == TEMPLATE["imageUrl"]


def test_test_certificate_expires(app, client):
    login(client)
    resp = client.post(
        "/api/test-certificate", json={"eventName": "PyCon", "templateData": TEMPLATE}
    )
    data = resp.get_json()
    assert data["certificateId"].startswith("TEST-")
    assert data["expiresIn"] == "1 hour"
    cert = db.session.get(Certificate, data["certificateId"])
    assert cert.is_test is True
    assert cert.name == "John Doe (Test)"
    assert cert.elements[0]["value"] == "John Doe (Test)"
    assert timedelta(minutes=59) < cert.expires_at - datetime.utcnow() <= timedelta(hours=1)

    assert client.get(f"/verify/{cert.id}.json").status_code == 200
    cert.expires_at = datetime.utcnow() - timedelta(minutes=1)
    db.session.commit()
    assert client.get(f"/verify/{cert.id}.json").status_code == 410
    assert client.get(f"/verify/{cert.id}").status_code == 410
