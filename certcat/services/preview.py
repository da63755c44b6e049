from __future__ import annotations

import base64
import hashlib
import json
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from io import BytesIO
from typing import Callable, Iterable

from PIL import Image, ImageDraw, ImageOps
from PyPDF2 import PdfReader

from ..shared.coordinates import CANVAS_WIDTH, height_for_width, scale_for_width
from ..shared.elements import hex_to_rgb, is_visible, opacity_fraction
from ..shared.fonts import FontKey, FontStore, font_key, raster_font
from ..shared.layout import BoxGeometry, Placement, TextGeometry, layout
from ..shared.resources import (
    ResourceFetchError,
    decode_data_url,
    fetch_bytes,
    fetch_many,
)

logger = logging.getLogger("certcat.render")

_CACHE_TTL_SECONDS = 45
_CACHE_MAX_ENTRIES = 32
MIN_PREVIEW_WIDTH = 200
MAX_PREVIEW_WIDTH = 4000
DEFAULT_FONT_TIMEOUT = 3.0
_PLACEHOLDER_FILL = (255, 255, 255, 255)
_PLACEHOLDER_INK = (156, 163, 175, 255)


@dataclass(frozen=True)
class PreviewResult:
    image_base64: str
    width: int
    height: int
    placements: tuple[Placement, ...]
    warnings: tuple[str, ...]

    @property
    def png(self) -> bytes:
        return base64.b64decode(self.image_base64)

    @property
    def data_url(self) -> str:
        return "data:image/png;base64," + self.image_base64


_preview_cache: dict[str, tuple[float, PreviewResult]] = {}


class FontReadinessGate:
    """Starts every font download up front and waits for them, bounded.

    Fonts still loading when the timeout expires are reported as missing
    so the caller draws with fallback metrics instead of hanging.
    """

    def __init__(
        self,
        store: FontStore,
        keys: Iterable[FontKey],
        timeout: float = DEFAULT_FONT_TIMEOUT,
    ) -> None:
        self.timeout = timeout
        self._keys = list(dict.fromkeys(keys))
        self._pool: ThreadPoolExecutor | None = None
        self._futures = {}
        if self._keys:
            self._pool = ThreadPoolExecutor(max_workers=min(4, len(self._keys)))
            self._futures = {key: self._pool.submit(store.load, key) for key in self._keys}
        self.timed_out: list[FontKey] = []

    def wait(self) -> dict[FontKey, bytes | None]:
        if not self._futures:
            return {}
        done, _ = wait(list(self._futures.values()), timeout=self.timeout)
        ready: dict[FontKey, bytes | None] = {}
        for key, future in self._futures.items():
            if future not in done:
                self.timed_out.append(key)
                ready[key] = None
                continue
            try:
                ready[key] = future.result()
            except Exception as exc:
                logger.warning("[PREVIEW-FONT] load failed family=%s error=%s", key.label, exc)
                ready[key] = None
        self._pool.shutdown(wait=False, cancel_futures=True)
        return ready


def _cache_put(key: str, result: PreviewResult) -> None:
    """Store a preview, dropping expired entries and then the oldest past the cap."""
    now = time.time()
    for stale in [k for k, (stamp, _) in _preview_cache.items() if now - stamp >= _CACHE_TTL_SECONDS]:
        del _preview_cache[stale]
    _preview_cache.pop(key, None)
    _preview_cache[key] = (now, result)
    while len(_preview_cache) > _CACHE_MAX_ENTRIES:
        del _preview_cache[next(iter(_preview_cache))]


def clamp_width(value, default: int) -> int:
    try:
        width = int(value)
    except (TypeError, ValueError):
        width = default
    return max(MIN_PREVIEW_WIDTH, min(MAX_PREVIEW_WIDTH, width))


def _build_cache_key(cache_id: str, width: int, background_url: str | None,
                     elements: list[dict]) -> str:
    fingerprint = json.dumps(elements, sort_keys=True, separators=(",", ":"), default=str)
    raw = "|".join([cache_id, str(width), background_url or "", fingerprint])
    return hashlib.sha256(raw.encode()).hexdigest()


def _pdf_background(data: bytes, width: int, height: int) -> Image.Image:
    """Paste the raster images embedded in a PDF's first page."""
    reader = PdfReader(BytesIO(data))
    page = reader.pages[0]
    page_w = float(page.mediabox.width)
    page_h = float(page.mediabox.height)
    sx = width / page_w
    sy = height / page_h
    canvas_img = Image.new("RGB", (width, height), "white")
    content = page.get_contents()
    if content is None:
        return canvas_img
    commands = content.get_data().decode("latin-1")
    pattern = re.compile(r"([\d\.\-\s]+)cm\s+/(\w+) Do")
    resources = page.get("/Resources")
    xobjects = resources.get("/XObject") if resources else None
    if not xobjects:
        return canvas_img
    for match in pattern.finditer(commands):
        numbers = [float(x) for x in match.group(1).split()]
        if len(numbers) != 6:
            continue
        a, _, _, d, e, f = numbers
        stream = xobjects.get("/" + match.group(2))
        if not stream:
            continue
        try:
            image = Image.open(BytesIO(stream.get_object().get_data())).convert("RGB")
        except Exception:
            continue
        w_px = max(1, int(round(abs(a) * sx)))
        h_px = max(1, int(round(abs(d) * sy)))
        y_top = f + abs(d) if d > 0 else f
        canvas_img.paste(
            image.resize((w_px, h_px)),
            (int(round(e * sx)), int(round((page_h - y_top) * sy))),
        )
    return canvas_img


def _render_background(
    url: str | None, data: bytes | None, width: int, height: int, warnings: list[str]
) -> Image.Image:
    if not url:
        return Image.new("RGBA", (width, height), (255, 255, 255, 255))
    if data:
        try:
            if data.lstrip()[:5] == b"%PDF-":
                base = _pdf_background(data, width, height)
            else:
                with Image.open(BytesIO(data)) as img:
                    base = img.convert("RGB").resize((width, height))
            return base.convert("RGBA")
        except Exception as exc:
            logger.warning("[PREVIEW-BG] unreadable background error=%s", exc)
    warnings.append("[preview-bg-fallback] background unavailable; using blank page")
    return Image.new("RGBA", (width, height), (255, 255, 255, 255))


def _composite(base: Image.Image, layer: Image.Image, opacity: float) -> None:
    if opacity < 1.0:
        alpha = layer.getchannel("A").point(lambda v: int(round(v * opacity)))
        layer.putalpha(alpha)
    base.alpha_composite(layer)


def _draw_text(base: Image.Image, element: dict, geom: TextGeometry, font) -> None:
    text = element.get("value") or ""
    if not text:
        return
    layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    fill = hex_to_rgb(element.get("color")) + (255,)
    spacing = geom.letter_spacing
    if not spacing:
        draw.text((geom.center_x, geom.center_y), text, font=font, fill=fill, anchor="mm")
    else:
        total = sum(font.getlength(ch) for ch in text) + spacing * len(text)
        x = geom.center_x - total / 2.0
        for ch in text:
            draw.text((x, geom.center_y), ch, font=font, fill=fill, anchor="lm")
            x += font.getlength(ch) + spacing
    _composite(base, layer, opacity_fraction(element))


def _paste_box(base: Image.Image, data: bytes, geom: BoxGeometry, opacity: float) -> None:
    box_w = max(1, int(round(geom.width)))
    box_h = max(1, int(round(geom.height)))
    with Image.open(BytesIO(data)) as img:
        fitted = ImageOps.contain(img.convert("RGBA"), (box_w, box_h))
    layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
    offset = (
        int(round(geom.center_x - fitted.width / 2.0)),
        int(round(geom.center_y - fitted.height / 2.0)),
    )
    layer.paste(fitted, offset, fitted)
    _composite(base, layer, opacity)


def _draw_qr_placeholder(base: Image.Image, geom: BoxGeometry, opacity: float) -> None:
    layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    left, top = geom.left, geom.top
    draw.rectangle(
        [left, top, left + geom.width, top + geom.height],
        fill=_PLACEHOLDER_FILL,
        outline=_PLACEHOLDER_INK,
    )
    inner = geom.width * 0.7
    step = inner / 5.0
    x0 = geom.center_x - inner / 2.0
    y0 = geom.center_y - inner / 2.0
    for row in range(5):
        for col in range(5):
            if (row + col) % 2 == 0 or row in (0, 4) and col in (0, 4):
                draw.rectangle(
                    [x0 + col * step, y0 + row * step,
                     x0 + (col + 1) * step, y0 + (row + 1) * step],
                    fill=_PLACEHOLDER_INK,
                )
    _composite(base, layer, opacity)


def render_preview(
    elements: Iterable[dict],
    background_url: str | None,
    *,
    width: int,
    cache_id: str | None = None,
    fetch: Callable[[str], bytes] | None = None,
    font_store: FontStore | None = None,
    font_timeout: float = DEFAULT_FONT_TIMEOUT,
) -> PreviewResult:
    """Rasterize a certificate at ``width`` pixels for the verification page."""
    elements = list(elements or [])
    width = clamp_width(width, CANVAS_WIDTH)
    height = height_for_width(width)
    cache_key = None
    if cache_id:
        cache_key = _build_cache_key(cache_id, width, background_url, elements)
        cached = _preview_cache.get(cache_key)
        if cached and time.time() - cached[0] < _CACHE_TTL_SECONDS:
            return cached[1]

    fetch = fetch or fetch_bytes
    font_store = font_store or FontStore(fetch=fetch)
    scale = scale_for_width(width)
    items = [(index, el) for index, el in enumerate(elements) if is_visible(el)]
    warnings: list[str] = []

    gate = FontReadinessGate(
        font_store,
        (font_key(el) for _, el in items if el.get("type") == "text"),
        timeout=font_timeout,
    )
    image_urls = [
        el.get("src") for _, el in items if el.get("type") == "image" and el.get("src")
    ]
    fetched = fetch_many([background_url or "", *image_urls], fetch=fetch)
    font_data = gate.wait()
    for key in gate.timed_out:
        logger.warning("[PREVIEW-FONT] family=%s not ready after %.1fs", key.label, font_timeout)
        warnings.append(f"[preview-font-timeout] {key.label} not ready; using fallback metrics")

    base = _render_background(
        background_url, fetched.get(background_url or ""), width, height, warnings
    )
    placements: list[Placement] = []
    for index, el in items:
        el_type = el.get("type")
        geom = layout(el, scale)
        try:
            if el_type == "text":
                key = font_key(el)
                data = font_data.get(key)
                if data is None and key not in gate.timed_out:
                    warnings.append(f"[preview-font-fallback] using default font for {key.label or '<default>'}")
                font = raster_font(key, geom.font_size, data)
                _draw_text(base, el, geom, font)
            elif el_type == "image":
                data = fetched.get(el.get("src") or "")
                if not data:
                    warnings.append(f"[preview-image-skipped] element {index} unavailable")
                    continue
                _paste_box(base, data, geom, opacity_fraction(el))
            elif el_type == "qrcode":
                payload = el.get("qrDataUrl")
                if payload:
                    _paste_box(base, decode_data_url(payload), geom, opacity_fraction(el))
                else:
                    _draw_qr_placeholder(base, geom, opacity_fraction(el))
            else:
                continue
        except (OSError, ResourceFetchError) as exc:
            logger.warning("[PREVIEW] element=%s type=%s skipped error=%s", index, el_type, exc)
            warnings.append(f"[preview-{el_type}-skipped] element {index} unreadable")
            continue
        placements.append(Placement(index, el_type, geom.center_x, geom.center_y))

    buffer = BytesIO()
    base.convert("RGB").save(buffer, format="PNG")
    result = PreviewResult(
        image_base64=base64.b64encode(buffer.getvalue()).decode("ascii"),
        width=width,
        height=height,
        placements=tuple(placements),
        warnings=tuple(warnings),
    )
    if cache_key:
        _cache_put(cache_key, result)
    return result
