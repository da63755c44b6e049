"""Mail helper utilities."""

from __future__ import annotations

import logging

logger = logging.getLogger("certcat.mailer")


def is_valid_email(value: str | None) -> bool:
    candidate = (value or "").strip().lower()
    if not candidate or "@" not in candidate:
        return False
    local, _, domain = candidate.rpartition("@")
    return bool(local) and "." in domain and not domain.startswith(".")


def clean_recipient(value: str | None) -> str | None:
    """Stripped address for the SMTP envelope, or ``None`` when unusable."""
    candidate = (value or "").strip()
    if not candidate:
        return None
    if not is_valid_email(candidate):
        logger.warning("[MAIL-INVALID-RECIPIENT] token=%s", candidate)
        return None
    return candidate
