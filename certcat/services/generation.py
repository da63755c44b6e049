"""Bulk certificate issuance.

Certificates for a batch are created and committed together before any
email goes out, so a mail failure never loses an issued credential.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from typing import Callable

from flask import current_app, render_template

from .. import emailer
from ..app import db
from ..models import Certificate, new_id, new_test_id
from ..shared.elements import sanitize_elements, sanitize_settings
from ..shared.placeholders import format_issue_date, resolve_elements
from ..shared.qr import make_qr_data_url

TEST_CERTIFICATE_TTL = timedelta(hours=1)
DEFAULT_TEST_NAME = "John Doe (Test)"
TEST_EMAIL = "test@example.com"


class CapacityError(RuntimeError):
    def __init__(self, needed: int, capacity: dict):
        self.needed = needed
        self.capacity = capacity
        super().__init__(
            f"Need {needed} emails but only {capacity['remaining']} available today."
        )


def verification_url_for(cert_id: str) -> str:
    return f"{current_app.config['APP_BASE_URL']}/verify/{cert_id}"


def _template_parts(template_data: dict) -> tuple[str, list[dict], dict]:
    if not isinstance(template_data, dict):
        raise ValueError("templateData must be an object")
    image_url = (template_data.get("imageUrl") or "").strip()
    return (
        image_url,
        sanitize_elements(template_data.get("elements")),
        sanitize_settings(template_data.get("settings")),
    )


def valid_participants(participants) -> list[dict]:
    if not isinstance(participants, list):
        raise ValueError("participants must be a list")
    rows = []
    for row in participants:
        if not isinstance(row, dict):
            continue
        name = str(row.get("name") or "").strip()
        email = str(row.get("email") or "").strip()
        if name and email:
            rows.append({"name": name, "email": email})
    return rows


def build_certificate(
    cert_id: str,
    name: str,
    email: str,
    *,
    event_name: str,
    organizer_name: str,
    organizer_email: str | None,
    template_id: str | None,
    template_data: dict,
    custom_message: str = "",
) -> Certificate:
    image_url, elements, settings = _template_parts(template_data)
    verification_url = verification_url_for(cert_id)
    values = {
        "name": name,
        "event": event_name,
        "date": format_issue_date(datetime.utcnow().date()),
        "id": cert_id,
        "organizer": organizer_name or "",
    }
    resolved = resolve_elements(
        elements,
        values,
        qr_data_url=make_qr_data_url(verification_url),
        verification_url=verification_url,
    )
    return Certificate(
        id=cert_id,
        template_id=template_id,
        name=name,
        email=email,
        event_name=event_name,
        organizer=organizer_name,
        organizer_email=organizer_email,
        template_url=image_url,
        elements=resolved,
        settings=settings,
        verification_url=verification_url,
        custom_message=custom_message or "",
    )


def certificate_email(cert: Certificate) -> tuple[str, str, str]:
    context = {
        "cert": cert,
        "pdf_url": f"{cert.verification_url}/certificate.pdf",
    }
    subject = f"Your Certificate for {cert.event_name}"
    text_body = render_template("email/certificate.txt", **context)
    html_body = render_template("email/certificate.html", **context)
    return subject, text_body, html_body


def generate_certificates(
    participants,
    *,
    event_name: str,
    organizer_name: str = "",
    organizer_email: str | None = None,
    template_data: dict,
    template_id: str | None = None,
    custom_message: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> dict:
    event_name = (event_name or "").strip()
    if not event_name or not template_data:
        raise ValueError("Missing required fields")
    rows = valid_participants(participants)

    capacity = emailer.get_capacity()
    if capacity["remaining"] < len(rows):
        raise CapacityError(len(rows), capacity)

    certificates = [
        build_certificate(
            new_id(),
            row["name"],
            row["email"],
            event_name=event_name,
            organizer_name=organizer_name,
            organizer_email=organizer_email,
            template_id=template_id,
            template_data=template_data,
            custom_message=custom_message,
        )
        for row in rows
    ]
    db.session.add_all(certificates)
    db.session.commit()
    current_app.logger.info(
        "[CERT-GEN] count=%s event=\"%s\" template=%s", len(certificates), event_name, template_id
    )

    delay = float(current_app.config.get("EMAIL_SEND_DELAY", 0.2))
    sent = failed = 0
    errors: list[dict] = []
    for position, cert in enumerate(certificates):
        subject, text_body, html_body = certificate_email(cert)
        result = emailer.send(cert.email, subject, text_body, html=html_body)
        if result.get("ok"):
            sent += 1
        else:
            failed += 1
            errors.append({"email": cert.email, "error": result.get("detail")})
            if result.get("exhausted"):
                current_app.logger.warning(
                    "[CERT-GEN] email ceiling reached after sent=%s of %s", sent, len(certificates)
                )
                break
        if delay and position < len(certificates) - 1:
            sleep(delay)

    current_app.logger.info(
        "[CERT-GEN] done certs=%s sent=%s failed=%s", len(certificates), sent, failed
    )
    return {
        "success": True,
        "count": len(certificates),
        "certificateIds": [c.id for c in certificates],
        "emails": {"sent": sent, "failed": failed, "errors": errors},
        "remainingCapacity": emailer.get_capacity()["remaining"],
    }


def create_test_certificate(
    *,
    event_name: str,
    organizer_name: str = "",
    template_data: dict,
    template_id: str | None = None,
    test_name: str = DEFAULT_TEST_NAME,
) -> Certificate:
    event_name = (event_name or "").strip()
    if not event_name or not template_data:
        raise ValueError("Missing required fields")
    cert = build_certificate(
        new_test_id(),
        (test_name or "").strip() or DEFAULT_TEST_NAME,
        TEST_EMAIL,
        event_name=event_name,
        organizer_name=organizer_name,
        organizer_email=TEST_EMAIL,
        template_id=template_id,
        template_data=template_data,
    )
    cert.is_test = True
    cert.expires_at = datetime.utcnow() + TEST_CERTIFICATE_TTL
    db.session.add(cert)
    db.session.commit()
    current_app.logger.info("[CERT-GEN] test certificate id=%s expires=%s", cert.id, cert.expires_at)
    return cert


def purge_expired_tests(now: datetime | None = None, dry_run: bool = False) -> list[str]:
    now = now or datetime.utcnow()
    expired = (
        db.session.query(Certificate)
        .filter(Certificate.is_test.is_(True))
        .filter(Certificate.expires_at.isnot(None))
        .filter(Certificate.expires_at < now)
        .all()
    )
    ids = [c.id for c in expired]
    if not dry_run:
        for cert in expired:
            db.session.delete(cert)
        db.session.commit()
    return ids
