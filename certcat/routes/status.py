from __future__ import annotations

import time
from datetime import datetime

from flask import Blueprint, current_app, jsonify, render_template, request
from sqlalchemy import text

from .. import emailer
from ..app import db
from ..models import OwnerTestEmailUsage
from ..shared.mail_utils import clean_recipient
from ..shared.rbac import owner_required

bp = Blueprint("status", __name__, url_prefix="/api")

TEST_EMAILS_PER_DAY = 5


def _elapsed_ms(start: float) -> int:
    return int(round((time.monotonic() - start) * 1000))


def _check_database() -> dict:
    start = time.monotonic()
    try:
        db.session.execute(text("SELECT 1"))
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning("[STATUS] database check failed error=%s", exc)
        return {"status": "down", "message": str(exc) or "Connection failed"}
    return {"status": "operational", "message": f"OK ({_elapsed_ms(start)}ms)"}


def _check_email() -> dict:
    start = time.monotonic()
    result = emailer.verify_connection()
    if result["status"] == "verified":
        return {"status": "operational", "message": f"OK ({_elapsed_ms(start)}ms)"}
    if result["status"] == "not_configured":
        return {"status": "down", "message": "Not configured"}
    return {"status": "down", "message": result["message"] or "Connection failed"}


@bp.get("/status")
def service_status():
    services = {
        "database": {"name": "Database", **_check_database()},
        "email": {"name": "Email Service (SMTP)", **_check_email()},
    }
    states = {service["status"] for service in services.values()}
    if "down" in states:
        overall = "partial_outage"
    elif "degraded" in states:
        overall = "degraded"
    else:
        overall = "operational"
    return jsonify(
        {
            "overall": overall,
            "timestamp": datetime.utcnow().isoformat(),
            "services": services,
        }
    )


@bp.get("/test-email")
def provider_status():
    result = emailer.verify_connection()
    settings = emailer.smtp_settings()
    provider = {
        "name": "SMTP",
        "status": result["status"],
        "message": result["message"],
        "configured": result["status"] != "not_configured",
    }
    if provider["configured"]:
        provider["from"] = settings["from_addr"]
    verified = result["status"] == "verified"
    return jsonify(
        {
            "success": True,
            "timestamp": datetime.utcnow().isoformat(),
            "summary": {
                "total": 1,
                "configured": int(provider["configured"]),
                "verified": int(verified),
                "message": (
                    "Email is ready to send" if verified else "Email is not configured correctly"
                ),
            },
            "providers": {"smtp": provider},
        }
    )


@bp.post("/test-email")
@owner_required
def send_test_email(current_owner):
    payload = request.get_json(silent=True) or {}
    to_addr = clean_recipient(payload.get("to"))
    if not to_addr:
        raise ValueError("Missing required field: to")

    usage = OwnerTestEmailUsage.for_owner(current_owner.uid, datetime.utcnow().date())
    if usage.count >= TEST_EMAILS_PER_DAY:
        db.session.rollback()
        return (
            jsonify(
                {
                    "success": False,
                    "error": f"Daily test email limit reached ({TEST_EMAILS_PER_DAY}/day). Try again tomorrow.",
                    "remaining": 0,
                }
            ),
            429,
        )
    if not emailer.is_configured():
        db.session.rollback()
        raise ValueError("Email is not configured. Set SMTP_HOST, SMTP_PORT and SMTP_FROM_DEFAULT.")

    usage.count = (usage.count or 0) + 1
    db.session.commit()
    remaining = TEST_EMAILS_PER_DAY - usage.count

    context = {
        "host": emailer.smtp_settings()["host"],
        "sent_at": datetime.utcnow().strftime("%Y-%m-%d %H:%M UTC"),
    }
    result = emailer.send(
        to_addr,
        "CertCat Test Email",
        render_template("email/test.txt", **context),
        html=render_template("email/test.html", **context),
    )
    current_app.logger.info(
        "[MAIL-TEST] owner=%s to=%s ok=%s", current_owner.uid, to_addr, result.get("ok")
    )
    if not result.get("ok"):
        return (
            jsonify({"success": False, "error": result.get("detail"), "remaining": remaining}),
            500 if not result.get("exhausted") else 429,
        )
    return jsonify(
        {
            "success": True,
            "message": "Test email sent",
            "to": to_addr,
            "remaining": remaining,
        }
    )
