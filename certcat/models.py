from __future__ import annotations

import time
import uuid
from datetime import date, datetime

from sqlalchemy.orm import validates

from .app import db


def new_id() -> str:
    return uuid.uuid4().hex


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while value:
        value, rem = divmod(value, 36)
        out = digits[rem] + out
    return out or "0"


def new_test_id() -> str:
    return "TEST-" + _base36(int(time.time() * 1000)).upper()


class Template(db.Model):
    __tablename__ = "templates"

    id = db.Column(db.String(64), primary_key=True, default=new_id)
    owner_uid = db.Column(db.String(128), nullable=False, index=True)
    owner_email = db.Column(db.String(255))
    name = db.Column(db.String(255), nullable=False)
    image_url = db.Column(db.Text, nullable=False)
    elements = db.Column(db.JSON, nullable=False, default=list)
    settings = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "imageUrl": self.image_url,
            "elements": self.elements or [],
            "settings": self.settings or {},
            "userId": self.owner_uid,
            "userEmail": self.owner_email,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class TemplateDraft(db.Model):
    __tablename__ = "template_drafts"

    id = db.Column(db.String(64), primary_key=True, default=new_id)
    owner_uid = db.Column(db.String(128), nullable=False, index=True)
    state = db.Column(db.JSON, nullable=False, default=dict)
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )


class Certificate(db.Model):
    __tablename__ = "certificates"

    id = db.Column(db.String(64), primary_key=True, default=new_id)
    template_id = db.Column(
        db.String(64), db.ForeignKey("templates.id", ondelete="SET NULL")
    )
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255))
    event_name = db.Column(db.String(255), nullable=False)
    organizer = db.Column(db.String(255))
    organizer_email = db.Column(db.String(255))
    template_url = db.Column(db.Text)
    elements = db.Column(db.JSON, nullable=False, default=list)
    settings = db.Column(db.JSON, nullable=False, default=dict)
    verification_url = db.Column(db.Text)
    custom_message = db.Column(db.Text)
    issued_at = db.Column(db.DateTime, server_default=db.func.now())
    is_test = db.Column(db.Boolean, nullable=False, default=False)
    expires_at = db.Column(db.DateTime)

    @validates("email")
    def lower_email(self, key, value):  # pragma: no cover - simple normalizer
        return value.strip().lower() if value else value

    def is_expired(self, now: datetime | None = None) -> bool:
        if not self.is_test or not self.expires_at:
            return False
        return (now or datetime.utcnow()) > self.expires_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "eventName": self.event_name,
            "organizer": self.organizer,
            "organizerEmail": self.organizer_email,
            "templateId": self.template_id,
            "templateUrl": self.template_url,
            "verificationUrl": self.verification_url,
            "issuedAt": self.issued_at.isoformat() if self.issued_at else None,
            "isTest": bool(self.is_test),
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }


class EmailUsage(db.Model):
    __tablename__ = "email_usage"

    day = db.Column(db.Date, primary_key=True)
    count = db.Column(db.Integer, nullable=False, default=0)

    @classmethod
    def for_day(cls, day: date) -> "EmailUsage":
        row = db.session.get(cls, day)
        if row is None:
            row = cls(day=day, count=0)
            db.session.add(row)
        return row


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    admin_email = db.Column(db.String(255), nullable=False, index=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    details = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "adminEmail": self.admin_email,
            "details": self.details or {},
            "timestamp": self.created_at.isoformat() if self.created_at else None,
        }


class SuspendedOwner(db.Model):
    __tablename__ = "suspended_owners"

    email = db.Column(db.String(255), primary_key=True)
    reason = db.Column(db.Text, nullable=False)
    suspended_by = db.Column(db.String(255))
    suspended_at = db.Column(db.DateTime, server_default=db.func.now())

    @validates("email")
    def lower_email(self, key, value):
        return value.strip().lower() if value else value

    @classmethod
    def is_suspended(cls, email: str | None) -> bool:
        if not email:
            return False
        return db.session.get(cls, email.strip().lower()) is not None


class OwnerTestEmailUsage(db.Model):
    __tablename__ = "test_email_usage"

    owner_uid = db.Column(db.String(128), primary_key=True)
    day = db.Column(db.Date, primary_key=True)
    count = db.Column(db.Integer, nullable=False, default=0)

    @classmethod
    def for_owner(cls, owner_uid: str, day: date) -> "OwnerTestEmailUsage":
        row = db.session.get(cls, (owner_uid, day))
        if row is None:
            row = cls(owner_uid=owner_uid, day=day, count=0)
            db.session.add(row)
        return row
