from __future__ import annotations

import functools
import logging

from flask import current_app

from ..models import Certificate
from ..shared.fonts import FontStore
from ..shared.resources import fetch_bytes
from ..shared.storage import download_filename
from .export import ExportResult, export_certificate_pdf
from .preview import PreviewResult, clamp_width, render_preview

logger = logging.getLogger("certcat.render")


def _fetcher():
    return functools.partial(fetch_bytes, timeout=current_app.config.get("FETCH_TIMEOUT", 10))


def _font_store(fetch) -> FontStore:
    return FontStore(cache_dir=current_app.config.get("FONT_CACHE_DIR"), fetch=fetch)


def certificate_filename(cert: Certificate) -> str:
    return download_filename(cert.name, cert.event_name)


def render_certificate_pdf(cert: Certificate) -> ExportResult:
    fetch = _fetcher()
    result = export_certificate_pdf(
        cert.elements or [],
        cert.template_url,
        title=f"{cert.name} - {cert.event_name}",
        fetch=fetch,
        font_store=_font_store(fetch),
    )
    for warning in result.warnings:
        logger.warning("[EXPORT] cert=%s %s", cert.id, warning)
    return result


def render_certificate_preview(cert: Certificate, width=None) -> PreviewResult:
    default = (cert.settings or {}).get("outputWidth") or 1684
    fetch = _fetcher()
    result = render_preview(
        cert.elements or [],
        cert.template_url,
        width=clamp_width(default if width is None else width, default),
        cache_id=cert.id,
        fetch=fetch,
        font_store=_font_store(fetch),
        font_timeout=current_app.config.get("FONT_READY_TIMEOUT", 3.0),
    )
    for warning in result.warnings:
        logger.warning("[PREVIEW] cert=%s %s", cert.id, warning)
    return result
