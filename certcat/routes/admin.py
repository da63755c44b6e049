from __future__ import annotations

import csv
import io

from flask import Blueprint, Response, abort, current_app, jsonify, request
from sqlalchemy import func, or_

from ..app import db
from ..models import AuditLog, Certificate
from ..services import admin as admin_service
from ..shared.rbac import admin_required

bp = Blueprint("admin", __name__, url_prefix="/admin")

MAX_PER_PAGE = 100
DEFAULT_LIMIT = 20


def _page_params(default: int = DEFAULT_LIMIT) -> tuple[int, int]:
    page = max(request.args.get("page", 1, type=int) or 1, 1)
    limit = min(max(request.args.get("limit", default, type=int) or default, 1), MAX_PER_PAGE)
    return page, limit


def _pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "totalCount": total,
        "totalPages": (total + limit - 1) // limit,
        "hasMore": page * limit < total,
    }


def _filtered_query():
    query = db.session.query(Certificate)
    is_test = (request.args.get("isTest") or "").strip().lower()
    if is_test in {"true", "1", "yes"}:
        query = query.filter(Certificate.is_test.is_(True))
    elif is_test in {"false", "0", "no"}:
        query = query.filter(Certificate.is_test.is_(False))
    search = (request.args.get("search") or "").strip().lower()
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                func.lower(Certificate.name).like(pattern),
                func.lower(Certificate.email).like(pattern),
                func.lower(Certificate.event_name).like(pattern),
            )
        )
    return query


@bp.get("/certificates")
@admin_required
def list_certificates(current_owner):
    page = max(request.args.get("page", 1, type=int) or 1, 1)
    per_page = min(max(request.args.get("perPage", 25, type=int) or 25, 1), MAX_PER_PAGE)
    query = _filtered_query()
    total = query.count()
    rows = (
        query.order_by(Certificate.issued_at.desc(), Certificate.id)
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return jsonify(
        {
            "success": True,
            "certificates": [c.to_dict() for c in rows],
            "pagination": {
                "page": page,
                "perPage": per_page,
                "total": total,
                "pages": (total + per_page - 1) // per_page,
            },
        }
    )


@bp.delete("/certificates/<cert_id>")
@admin_required
def delete_certificate(cert_id: str, current_owner):
    cert = db.session.get(Certificate, cert_id)
    if not cert:
        abort(404)
    admin_service.log_admin_action(
        admin_service.AUDIT_DELETE_CERTIFICATE,
        current_owner.email,
        certificateId=cert_id,
        recipientEmail=cert.email,
        eventName=cert.event_name,
    )
    db.session.delete(cert)
    db.session.commit()
    current_app.logger.info("[ADMIN] deleted certificate id=%s by=%s", cert_id, current_owner.email)
    return jsonify({"success": True})


@bp.get("/certificates/export.csv")
@admin_required
def export_csv(current_owner):
    rows = _filtered_query().order_by(Certificate.issued_at.desc(), Certificate.id).all()

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(
        [
            "CertificateId",
            "RecipientName",
            "RecipientEmail",
            "EventName",
            "Organizer",
            "IssuedAt",
            "IsTest",
            "VerificationUrl",
            "PdfUrl",
        ]
    )
    for cert in rows:
        writer.writerow(
            [
                cert.id,
                cert.name,
                cert.email or "",
                cert.event_name,
                cert.organizer or "",
                cert.issued_at.isoformat() if cert.issued_at else "",
                "yes" if cert.is_test else "no",
                cert.verification_url or "",
                f"{cert.verification_url}/certificate.pdf" if cert.verification_url else "",
            ]
        )

    resp = Response(output.getvalue(), mimetype="text/csv")
    resp.headers["Content-Disposition"] = "attachment; filename=certificates.csv"
    return resp


@bp.get("/analytics")
@admin_required
def analytics(current_owner):
    period = (request.args.get("period") or "month").strip().lower()
    data = admin_service.analytics(period)
    admin_service.log_admin_action(
        admin_service.AUDIT_VIEW_ANALYTICS, current_owner.email, period=data["period"]
    )
    db.session.commit()
    return jsonify({"success": True, "analytics": data})


@bp.get("/logs")
@admin_required
def audit_logs(current_owner):
    page, limit = _page_params()
    query = db.session.query(AuditLog)
    action = (request.args.get("action") or "").strip()
    if action:
        query = query.filter(AuditLog.action == action)
    admin_email = (request.args.get("admin") or "").strip().lower()
    if admin_email:
        query = query.filter(AuditLog.admin_email.like(f"%{admin_email}%"))
    total = query.count()
    rows = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return jsonify(
        {
            "success": True,
            "logs": [row.to_dict() for row in rows],
            "pagination": _pagination(page, limit, total),
            "actionTypes": list(admin_service.AUDIT_ACTIONS),
        }
    )


@bp.get("/users")
@admin_required
def list_users(current_owner):
    page, limit = _page_params()
    search = request.args.get("search") or ""
    status = (request.args.get("status") or "").strip().lower()
    owners = admin_service.list_owners(search=search, status=status)
    window = owners[(page - 1) * limit : page * limit]
    admin_service.log_admin_action(
        admin_service.AUDIT_VIEW_USERS,
        current_owner.email,
        page=page,
        limit=limit,
        search=search.strip() or None,
        statusFilter=status or None,
        resultCount=len(window),
    )
    db.session.commit()
    return jsonify(
        {"success": True, "users": window, "pagination": _pagination(page, limit, len(owners))}
    )


@bp.post("/users")
@admin_required
def manage_user(current_owner):
    payload = request.get_json(silent=True) or {}
    action = payload.get("action") or ""
    email = admin_service.set_suspension(
        payload.get("email") or "",
        action,
        payload.get("reason") or "",
        current_owner.email,
    )
    verb = "suspended" if action == "suspend" else "unsuspended"
    return jsonify({"success": True, "message": f"User {email} has been {verb}"})


@bp.get("/users/<path:email>")
@admin_required
def user_detail(email: str, current_owner):
    detail = admin_service.owner_detail(email)
    admin_service.log_admin_action(
        admin_service.AUDIT_VIEW_USER, current_owner.email, targetEmail=detail["email"]
    )
    db.session.commit()
    return jsonify({"success": True, "user": detail})
