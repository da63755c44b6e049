from __future__ import annotations

import re
from copy import deepcopy
from datetime import date
from typing import Iterable, Mapping

PLACEHOLDER_KEYS: tuple[str, ...] = ("name", "event", "date", "id", "organizer")

_PLACEHOLDER_RE = re.compile(
    r"\{(" + "|".join(PLACEHOLDER_KEYS) + r")\}", re.IGNORECASE
)


def format_issue_date(value: date) -> str:
    """Render dates like ``October 19, 2026``."""
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def substitute(text: str, values: Mapping[str, str]) -> str:
    """Replace ``{name}``-style tokens in one pass, ignoring case.

    Substituted values are never scanned again, so a recipient named
    ``{event}`` stays literal.
    """

    def _replace(match: re.Match) -> str:
        return str(values.get(match.group(1).lower(), "") or "")

    return _PLACEHOLDER_RE.sub(_replace, text or "")


def resolve_elements(
    elements: Iterable[dict],
    values: Mapping[str, str],
    *,
    qr_data_url: str | None,
    verification_url: str,
) -> list[dict]:
    resolved: list[dict] = []
    for element in elements:
        item = deepcopy(element)
        if item.get("type") == "text":
            item["value"] = substitute(item.get("value") or "", values)
        elif item.get("type") == "qrcode":
            item["qrDataUrl"] = qr_data_url
            item["qrUrl"] = verification_url
        resolved.append(item)
    return resolved
