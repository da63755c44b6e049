"""Vector PDF export of a certificate's element list.

The page is the canonical 842 x 595 point canvas at scale 1.0.  PDF space
grows upward, so every screen-space center is flipped with ``flip_y``.
Text is centered by measuring its advance width; vertically the baseline
is offset by half of an approximate cap height (``ascent * 0.7``), which
drifts slightly from the DOM/preview centering for fonts whose real cap
height differs.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from io import BytesIO
from typing import Callable, Iterable

from PyPDF2 import PdfReader, PdfWriter
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from ..shared.coordinates import CANVAS_HEIGHT, CANVAS_WIDTH, flip_y
from ..shared.elements import hex_to_rgb, is_visible, opacity_fraction
from ..shared.fonts import (
    FontKey,
    FontStore,
    fallback_pdf_font,
    font_key,
    register_pdf_font,
)
from ..shared.layout import BoxGeometry, Placement, TextGeometry, layout
from ..shared.resources import ResourceFetchError, decode_data_url, fetch_bytes

logger = logging.getLogger("certcat.render")

CAP_HEIGHT_RATIO = 0.7
_MAX_WORKERS = 6


class ExportError(RuntimeError):
    """Raised when no PDF page could be produced at all."""


@dataclass(frozen=True)
class ExportResult:
    pdf: bytes
    placements: tuple[Placement, ...]
    warnings: tuple[str, ...]


def _is_pdf(data: bytes | None) -> bool:
    return bool(data) and data.lstrip()[:5] == b"%PDF-"


def _prefetch(
    background_url: str | None,
    image_urls: Iterable[str],
    font_keys: Iterable[FontKey],
    fetch: Callable[[str], bytes],
    font_store: FontStore,
) -> tuple[dict[str, bytes | None], dict[FontKey, bytes | None]]:
    """Issue every independent fetch at once; failures become ``None``."""
    urls = list(dict.fromkeys(u for u in [background_url, *image_urls] if u))
    keys = list(dict.fromkeys(font_keys))
    url_results: dict[str, bytes | None] = {}
    font_results: dict[FontKey, bytes | None] = {}
    if not urls and not keys:
        return url_results, font_results

    workers = max(1, min(_MAX_WORKERS, len(urls) + len(keys)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        url_futures = {url: pool.submit(fetch, url) for url in urls}
        font_futures = {key: pool.submit(font_store.load, key) for key in keys}
        for url, future in url_futures.items():
            try:
                url_results[url] = future.result()
            except Exception as exc:
                logger.warning("[EXPORT-FETCH] failed url=%s error=%s", url[:80], exc)
                url_results[url] = None
        for key, future in font_futures.items():
            try:
                font_results[key] = future.result()
            except Exception as exc:
                logger.warning("[EXPORT-FONT] load failed family=%s error=%s", key.label, exc)
                font_results[key] = None
    return url_results, font_results


class _PdfFonts:
    def __init__(self, loaded: dict[FontKey, bytes | None], warnings: list[str]):
        self._loaded = loaded
        self._warnings = warnings
        self._names: dict[FontKey, str] = {}

    def resolve(self, key: FontKey) -> str:
        if key in self._names:
            return self._names[key]
        name = None
        data = self._loaded.get(key)
        if data:
            name = register_pdf_font(key, data)
        if not name:
            name = fallback_pdf_font(key)
            logger.warning(
                "[EXPORT-FONT] family=%s unavailable; using %s", key.label or "<default>", name
            )
            self._warnings.append(
                f"[export-font-fallback] {key.label or '<default>'} replaced with {name}"
            )
        self._names[key] = name
        return name


def _draw_text(
    c: canvas.Canvas,
    element: dict,
    geom: TextGeometry,
    font_name: str,
) -> float:
    """Draw one text element centered on its point; returns the baseline."""
    text = element.get("value") or ""
    size = geom.font_size
    spacing = geom.letter_spacing
    width = stringWidth(text, font_name, size) + spacing * len(text)
    ascent = pdfmetrics.getAscent(font_name, size)
    cap_height = ascent * CAP_HEIGHT_RATIO
    draw_x = geom.center_x - width / 2.0
    baseline = flip_y(geom.center_y) - cap_height / 2.0

    r, g, b = hex_to_rgb(element.get("color"))
    c.saveState()
    c.setFillColorRGB(r / 255.0, g / 255.0, b / 255.0)
    c.setFillAlpha(opacity_fraction(element))
    text_obj = c.beginText(draw_x, baseline)
    text_obj.setFont(font_name, size)
    if spacing:
        text_obj.setCharSpace(spacing)
    text_obj.textOut(text)
    c.drawText(text_obj)
    c.restoreState()
    return baseline


def _draw_box_image(
    c: canvas.Canvas, data: bytes, geom: BoxGeometry, opacity: float
) -> None:
    bottom = flip_y(geom.top + geom.height)
    c.saveState()
    c.setFillAlpha(opacity)
    c.drawImage(
        ImageReader(BytesIO(data)),
        geom.left,
        bottom,
        width=geom.width,
        height=geom.height,
        preserveAspectRatio=True,
        anchor="c",
        mask="auto",
    )
    c.restoreState()


def _draw_background(c: canvas.Canvas, data: bytes) -> None:
    c.drawImage(
        ImageReader(BytesIO(data)), 0, 0, width=CANVAS_WIDTH, height=CANVAS_HEIGHT
    )


def _qr_bytes(element: dict) -> bytes | None:
    payload = element.get("qrDataUrl")
    if not payload:
        return None
    return decode_data_url(payload)


def _finalize(overlay: bytes, background_pdf: bytes | None, title: str | None,
              warnings: list[str]) -> bytes:
    overlay_page = PdfReader(BytesIO(overlay)).pages[0]
    page = overlay_page
    if background_pdf:
        try:
            base_page = PdfReader(BytesIO(background_pdf)).pages[0]
            base_page.scale_to(CANVAS_WIDTH, CANVAS_HEIGHT)
            base_page.merge_page(overlay_page)
            page = base_page
        except Exception as exc:
            logger.warning("[EXPORT-BG] PDF background unusable error=%s", exc)
            warnings.append("[export-bg-fallback] background PDF could not be merged")
    writer = PdfWriter()
    writer.add_page(page)
    if title:
        writer.add_metadata({"/Title": title, "/Producer": "certcat"})
    out = BytesIO()
    writer.write(out)
    return out.getvalue()


def export_certificate_pdf(
    elements: Iterable[dict],
    background_url: str | None = None,
    *,
    title: str | None = None,
    fetch: Callable[[str], bytes] | None = None,
    font_store: FontStore | None = None,
) -> ExportResult:
    """Render ``elements`` over ``background_url`` as a one-page PDF.

    Missing fonts, images and backgrounds are logged and replaced; only a
    failure to build the page itself raises :class:`ExportError`.
    """
    fetch = fetch or fetch_bytes
    font_store = font_store or FontStore(fetch=fetch)
    items = [(index, el) for index, el in enumerate(elements or []) if is_visible(el)]
    warnings: list[str] = []

    image_urls = [
        el.get("src") for _, el in items if el.get("type") == "image" and el.get("src")
    ]
    text_keys = [font_key(el) for _, el in items if el.get("type") == "text"]
    fetched, loaded_fonts = _prefetch(
        background_url, image_urls, text_keys, fetch, font_store
    )
    fonts = _PdfFonts(loaded_fonts, warnings)

    try:
        buffer = BytesIO()
        c = canvas.Canvas(buffer, pagesize=(CANVAS_WIDTH, CANVAS_HEIGHT))
        if title:
            c.setTitle(title)

        background_pdf = None
        bg_data = fetched.get(background_url) if background_url else None
        if background_url and bg_data is None:
            warnings.append("[export-bg-fallback] background unavailable")
        elif _is_pdf(bg_data):
            background_pdf = bg_data
        elif bg_data:
            try:
                _draw_background(c, bg_data)
            except Exception as exc:
                logger.warning("[EXPORT-BG] raster background unusable error=%s", exc)
                warnings.append("[export-bg-fallback] background image unreadable")

        placements: list[Placement] = []
        for index, el in items:
            el_type = el.get("type")
            geom = layout(el, 1.0)
            if el_type == "text":
                font_name = fonts.resolve(font_key(el))
                _draw_text(c, el, geom, font_name)
                placements.append(Placement(index, el_type, geom.center_x, geom.center_y))
                continue
            if el_type == "image":
                data = fetched.get(el.get("src") or "")
            elif el_type == "qrcode":
                try:
                    data = _qr_bytes(el)
                except ResourceFetchError as exc:
                    logger.warning("[EXPORT-QR] element=%s error=%s", index, exc)
                    data = None
            else:
                continue
            if not data:
                warnings.append(f"[export-{el_type}-skipped] element {index} has no image data")
                continue
            try:
                _draw_box_image(c, data, geom, opacity_fraction(el))
            except Exception as exc:
                logger.warning("[EXPORT-IMG] element=%s unreadable error=%s", index, exc)
                warnings.append(f"[export-{el_type}-skipped] element {index} unreadable")
                continue
            placements.append(Placement(index, el_type, geom.center_x, geom.center_y))

        c.showPage()
        c.save()
        pdf_bytes = _finalize(buffer.getvalue(), background_pdf, title, warnings)
    except Exception as exc:
        logger.exception("[EXPORT] failed to build certificate page")
        raise ExportError("Failed to generate PDF. Please try again.") from exc

    return ExportResult(pdf=pdf_bytes, placements=tuple(placements), warnings=tuple(warnings))
