import logging
import os
import smtplib
import sys
from datetime import datetime
from email.message import EmailMessage

from flask import current_app

from .shared.mail_utils import clean_recipient

logger = logging.getLogger("certcat.mailer")
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    logger.addHandler(handler)
logger.setLevel(logging.INFO)


def smtp_settings() -> dict:
    return {
        "host": os.getenv("SMTP_HOST"),
        "port": os.getenv("SMTP_PORT"),
        "user": os.getenv("SMTP_USER"),
        "password": os.getenv("SMTP_PASS"),
        "from_addr": os.getenv("SMTP_FROM_DEFAULT"),
        "from_name": os.getenv("SMTP_FROM_NAME", ""),
    }


def is_configured() -> bool:
    settings = smtp_settings()
    return bool(settings["host"] and settings["port"] and settings["from_addr"])


def _today():
    return datetime.utcnow().date()


def get_capacity() -> dict:
    """Today's usage against the daily sending ceiling."""
    from .models import EmailUsage  # local import to avoid circular import at module load
    from .app import db

    limit = int(current_app.config.get("EMAIL_DAILY_LIMIT", 500))
    row = db.session.get(EmailUsage, _today())
    used = row.count if row else 0
    remaining = max(0, limit - used)
    if not is_configured():
        status = "not_configured"
    elif remaining == 0:
        status = "exhausted"
    else:
        status = "available"
    return {
        "used": used,
        "limit": limit,
        "remaining": remaining,
        "percentage": round(used / limit * 100) if limit else 100,
        "status": status,
    }


def _record_sent() -> None:
    from .models import EmailUsage
    from .app import db

    row = EmailUsage.for_day(_today())
    row.count = (row.count or 0) + 1
    db.session.commit()



def _connect(settings: dict):
    port_int = int(settings["port"])
    if port_int == 465:
        server = smtplib.SMTP_SSL(settings["host"], port_int)
    else:
        server = smtplib.SMTP(settings["host"], port_int)
        if port_int == 587:
            server.starttls()
    if settings["user"] and settings["password"]:
        server.login(settings["user"], settings["password"])
    return server


def verify_connection() -> dict:
    """Open and close an SMTP session without sending anything."""
    settings = smtp_settings()
    if not is_configured():
        return {"status": "not_configured", "message": "Missing SMTP settings"}
    try:
        server = _connect(settings)
        server.noop()
        server.quit()
    except Exception as e:
        logger.warning("[MAIL-VERIFY] host=%s result=%s", settings["host"], e)
        return {"status": "error", "message": str(e)}
    logger.info("[MAIL-VERIFY] host=%s result=ok", settings["host"])
    return {"status": "verified", "message": "SMTP connection successful"}


def send(
    recipient: str | None,
    subject: str,
    body: str,
    html: str | None = None,
):
    settings = smtp_settings()
    host = settings["host"]
    from_addr = settings["from_addr"]
    from_name = settings["from_name"]

    to_addr = clean_recipient(recipient)
    mode = "real"
    if not is_configured():
        mode = "stub"
        logger.info(
            "[MAIL-OUT] mode=%s to=%s subject=\"%s\" host=%s result=stub",
            mode,
            to_addr,
            subject,
            host,
        )
        return {"ok": False, "detail": "stub: missing config", "exhausted": False}

    if not to_addr:
        logger.warning(
            "[MAIL-NO-RECIPIENTS] subject=\"%s\" host=%s", subject, host
        )
        return {"ok": False, "detail": "no valid recipients", "exhausted": False}

    if get_capacity()["remaining"] <= 0:
        logger.warning("[MAIL-LIMIT] daily limit reached subject=\"%s\"", subject)
        return {"ok": False, "detail": "daily email limit reached", "exhausted": True}

    try:
        server = _connect(settings)
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["To"] = to_addr
        msg["From"] = f"{from_name} <{from_addr}>" if from_name else from_addr
        msg.set_content(body)
        if html:
            msg.add_alternative(html, subtype="html")
        server.sendmail(from_addr, [to_addr], msg.as_string())
        server.quit()
        _record_sent()
        logger.info(
            "[MAIL-OUT] mode=%s to=%s subject=\"%s\" host=%s result=sent",
            mode,
            to_addr,
            subject,
            host,
        )
        return {"ok": True, "detail": "sent", "exhausted": False}
    except Exception as e:
        logger.info(
            "[MAIL-OUT] mode=%s to=%s subject=\"%s\" host=%s result=%s",
            mode,
            to_addr,
            subject,
            host,
            e,
        )
        return {"ok": False, "detail": str(e), "exhausted": False}
