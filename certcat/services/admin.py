"""Admin reporting: audit trail, issuance analytics and organizer status."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from ..app import db
from ..models import AuditLog, Certificate, SuspendedOwner, Template

AUDIT_VIEW_USERS = "view_users"
AUDIT_VIEW_USER = "view_user"
AUDIT_SUSPEND_USER = "suspend_user"
AUDIT_UNSUSPEND_USER = "unsuspend_user"
AUDIT_DELETE_CERTIFICATE = "delete_certificate"
AUDIT_VIEW_ANALYTICS = "view_analytics"
AUDIT_ACTIONS = (
    AUDIT_VIEW_USERS,
    AUDIT_VIEW_USER,
    AUDIT_SUSPEND_USER,
    AUDIT_UNSUSPEND_USER,
    AUDIT_DELETE_CERTIFICATE,
    AUDIT_VIEW_ANALYTICS,
)

PERIODS = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "all": None,
}
TOP_LIMIT = 10
RECENT_LIMIT = 10
USER_CERT_LIMIT = 50


def log_admin_action(action: str, admin_email: str, **details) -> AuditLog:
    """Add an audit row to the session; the caller commits with its own work."""
    entry = AuditLog(
        action=action,
        admin_email=(admin_email or "").strip().lower(),
        details={k: v for k, v in details.items() if v is not None},
    )
    db.session.add(entry)
    current_app.logger.info("[ADMIN-AUDIT] action=%s by=%s", action, entry.admin_email)
    return entry


def period_start(period: str, now: datetime) -> datetime:
    window = PERIODS.get(period)
    if window is None:
        return datetime(1970, 1, 1)
    return now - window


def _ranked(counts: dict, key: str) -> list[dict]:
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [{key: name, "certificateCount": count} for name, count in ranked[:TOP_LIMIT]]


def analytics(period: str = "month", now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    if period not in PERIODS:
        period = "all"
    start = period_start(period, now)

    total = db.session.query(func.count(Certificate.id)).scalar() or 0
    tests = (
        db.session.query(func.count(Certificate.id))
        .filter(Certificate.is_test.is_(True))
        .scalar()
        or 0
    )
    total_users = (
        db.session.query(func.count(func.distinct(func.lower(Certificate.organizer_email))))
        .filter(Certificate.organizer_email.isnot(None))
        .scalar()
        or 0
    )
    total_events = (
        db.session.query(func.count(func.distinct(Certificate.event_name))).scalar() or 0
    )
    total_templates = db.session.query(func.count(Template.id)).scalar() or 0

    rows = (
        db.session.query(Certificate.issued_at, Certificate.event_name, Certificate.organizer_email)
        .filter(Certificate.issued_at >= start)
        .all()
    )
    daily = defaultdict(lambda: {"certificates": 0, "events": set(), "users": set()})
    organizers: dict[str, int] = defaultdict(int)
    events: dict[str, int] = defaultdict(int)
    for issued_at, event_name, organizer_email in rows:
        bucket = daily[issued_at.date().isoformat()]
        bucket["certificates"] += 1
        if event_name:
            bucket["events"].add(event_name)
            events[event_name] += 1
        if organizer_email:
            email = organizer_email.lower()
            bucket["users"].add(email)
            organizers[email] += 1

    return {
        "overview": {
            "totalCertificates": total,
            "periodCertificates": len(rows),
            "testCertificates": tests,
            "totalTemplates": total_templates,
            "totalUsers": total_users,
            "periodUsers": len(organizers),
            "totalEvents": total_events,
            "periodEvents": len(events),
        },
        "period": period,
        "periodStart": start.isoformat(),
        "periodEnd": now.isoformat(),
        "dailyBreakdown": [
            {
                "date": day,
                "certificates": data["certificates"],
                "events": len(data["events"]),
                "users": len(data["users"]),
            }
            for day, data in sorted(daily.items())
        ],
        "topOrganizers": _ranked(organizers, "email"),
        "topEvents": _ranked(events, "name"),
    }


def list_owners(search: str = "", status: str = "") -> list[dict]:
    """Organizers seen on issued certificates, most recently active first."""
    suspended = {row.email for row in db.session.query(SuspendedOwner.email)}
    rows = (
        db.session.query(
            func.lower(Certificate.organizer_email),
            func.max(Certificate.organizer),
            func.count(Certificate.id),
            func.min(Certificate.issued_at),
            func.max(Certificate.issued_at),
        )
        .filter(Certificate.organizer_email.isnot(None))
        .group_by(func.lower(Certificate.organizer_email))
        .all()
    )
    search = (search or "").strip().lower()
    owners = []
    for email, display_name, count, first_seen, last_activity in rows:
        if not email:
            continue
        display_name = display_name or email
        if search and search not in email and search not in display_name.lower():
            continue
        owner_status = "suspended" if email in suspended else "active"
        if status and owner_status != status:
            continue
        owners.append(
            {
                "email": email,
                "displayName": display_name,
                "certificateCount": count,
                "firstSeen": first_seen.isoformat() if first_seen else None,
                "lastActivity": last_activity.isoformat() if last_activity else None,
                "status": owner_status,
            }
        )
    owners.sort(key=lambda o: o["lastActivity"] or "", reverse=True)
    return owners


def owner_detail(email: str) -> dict:
    email = (email or "").strip().lower()
    suspension = db.session.get(SuspendedOwner, email)
    certs = (
        db.session.query(Certificate)
        .filter(func.lower(Certificate.organizer_email) == email)
        .order_by(Certificate.issued_at.desc(), Certificate.id)
        .limit(USER_CERT_LIMIT)
        .all()
    )
    recent = [
        {
            "id": c.id,
            "recipientName": c.name,
            "recipientEmail": c.email,
            "eventName": c.event_name,
            "issuedAt": c.issued_at.isoformat() if c.issued_at else None,
            "isTest": bool(c.is_test),
        }
        for c in certs
    ]
    return {
        "email": email,
        "status": "suspended" if suspension else "active",
        "suspension": (
            {
                "reason": suspension.reason,
                "suspendedBy": suspension.suspended_by,
                "suspendedAt": (
                    suspension.suspended_at.isoformat() if suspension.suspended_at else None
                ),
            }
            if suspension
            else None
        ),
        "stats": {
            "totalCertificates": len(certs),
            "testCertificates": sum(1 for c in certs if c.is_test),
            "uniqueEvents": len({c.event_name for c in certs}),
            "uniqueRecipients": len({c.email for c in certs}),
        },
        "recentCertificates": recent[:RECENT_LIMIT],
    }


def set_suspension(email: str, action: str, reason: str, admin_email: str) -> str:
    """Suspend or reinstate an organizer; returns the normalized email."""
    email = (email or "").strip().lower()
    if not email or not action:
        raise ValueError("Email and action are required")
    if action not in ("suspend", "unsuspend"):
        raise ValueError("Invalid action")
    reason = (reason or "").strip()
    if action == "suspend":
        if not reason:
            raise ValueError("Reason is required for suspension")
        row = db.session.get(SuspendedOwner, email) or SuspendedOwner(email=email)
        row.reason = reason
        row.suspended_by = admin_email
        row.suspended_at = datetime.utcnow()
        db.session.add(row)
        log_admin_action(AUDIT_SUSPEND_USER, admin_email, targetEmail=email, reason=reason)
    else:
        row = db.session.get(SuspendedOwner, email)
        if row is not None:
            db.session.delete(row)
        log_admin_action(AUDIT_UNSUSPEND_USER, admin_email, targetEmail=email)
    db.session.commit()
    return email
