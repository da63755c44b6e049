from __future__ import annotations

from flask import Blueprint, abort, jsonify, request

from .. import emailer
from ..app import db
from ..models import Template
from ..services.generation import (
    DEFAULT_TEST_NAME,
    CapacityError,
    create_test_certificate,
    generate_certificates,
)
from ..shared.rbac import issuer_required

bp = Blueprint("generate", __name__, url_prefix="/api")


def _template_source(payload: dict, owner) -> tuple[dict | None, str | None]:
    template_id = payload.get("templateId")
    if template_id:
        template = db.session.get(Template, template_id)
        if not template:
            abort(404)
        if template.owner_uid != owner.uid:
            abort(403)
        return (
            {
                "imageUrl": template.image_url,
                "elements": template.elements,
                "settings": template.settings,
            },
            template.id,
        )
    return payload.get("templateData"), None


@bp.post("/generate")
@issuer_required
def generate(current_owner):
    payload = request.get_json(silent=True) or {}
    template_data, template_id = _template_source(payload, current_owner)
    try:
        result = generate_certificates(
            payload.get("participants"),
            event_name=payload.get("eventName") or "",
            organizer_name=payload.get("organizerName") or "",
            organizer_email=payload.get("organizerEmail") or current_owner.email,
            template_data=template_data,
            template_id=template_id,
            custom_message=payload.get("customMessage") or "",
        )
    except CapacityError as exc:
        return (
            jsonify({"success": False, "error": str(exc), "capacity": exc.capacity}),
            429,
        )
    return jsonify(result)


@bp.post("/test-certificate")
@issuer_required
def test_certificate(current_owner):
    payload = request.get_json(silent=True) or {}
    template_data, template_id = _template_source(payload, current_owner)
    cert = create_test_certificate(
        event_name=payload.get("eventName") or "",
        organizer_name=payload.get("organizerName") or "",
        template_data=template_data,
        template_id=template_id,
        test_name=payload.get("testName") or DEFAULT_TEST_NAME,
    )
    return jsonify(
        {
            "success": True,
            "certificateId": cert.id,
            "verificationUrl": cert.verification_url,
            "expiresAt": cert.expires_at.isoformat(),
            "expiresIn": "1 hour",
        }
    )


@bp.get("/email-capacity")
def email_capacity():
    return jsonify(emailer.get_capacity())
