from __future__ import annotations

from io import BytesIO

from flask import Blueprint, abort, jsonify, render_template, request, send_file

from ..app import db
from ..models import Certificate
from ..services.certificates import (
    certificate_filename,
    render_certificate_pdf,
    render_certificate_preview,
)

bp = Blueprint("verify", __name__, url_prefix="/verify")


def _load(cert_id: str) -> Certificate:
    cert = db.session.get(Certificate, cert_id)
    if not cert:
        abort(404)
    if cert.is_expired():
        abort(410)
    return cert


@bp.get("/<cert_id>")
def verify_page(cert_id: str):
    if cert_id.endswith(".json"):
        return verify_json(cert_id[: -len(".json")])
    cert = _load(cert_id)
    return render_template("verify.html", cert=cert)


def verify_json(cert_id: str):
    cert = _load(cert_id)
    return jsonify({"success": True, "valid": True, "certificate": cert.to_dict()})


@bp.get("/<cert_id>/preview.png")
def preview_png(cert_id: str):
    cert = _load(cert_id)
    result = render_certificate_preview(cert, request.args.get("width"))
    resp = send_file(BytesIO(result.png), mimetype="image/png")
    resp.headers["Cache-Control"] = "public, max-age=45"
    return resp


@bp.get("/<cert_id>/certificate.pdf")
def certificate_pdf(cert_id: str):
    cert = _load(cert_id)
    result = render_certificate_pdf(cert)
    return send_file(
        BytesIO(result.pdf),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=certificate_filename(cert),
    )
