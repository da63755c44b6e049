from dataclasses import dataclass
from functools import wraps

from flask import abort, current_app, session


@dataclass(frozen=True)
class Owner:
    uid: str
    email: str

    @property
    def is_admin(self) -> bool:
        return self.email.lower() in current_app.config.get("ADMIN_EMAILS", set())


def get_owner():
    """The signed-in identity placed in the session by the auth layer."""
    uid = session.get("owner_uid")
    if not uid:
        return None
    return Owner(uid=str(uid), email=(session.get("owner_email") or "").strip())


def owner_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        owner = get_owner()
        if owner is None:
            abort(401)
        return fn(*args, **kwargs, current_owner=owner)

    return wrapper


def admin_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        owner = get_owner()
        if owner is None:
            abort(401)
        if not owner.is_admin:
            abort(403)
        return fn(*args, **kwargs, current_owner=owner)

    return wrapper


def issuer_required(fn):
    """Like ``owner_required`` but refuses owners an admin has suspended."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        from ..models import SuspendedOwner

        owner = get_owner()
        if owner is None:
            abort(401)
        if SuspendedOwner.is_suspended(owner.email):
            abort(403)
        return fn(*args, **kwargs, current_owner=owner)

    return wrapper
