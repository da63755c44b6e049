from __future__ import annotations

import hashlib
import logging
import os
import re
from io import BytesIO
from typing import Callable, NamedTuple

from PIL import ImageFont
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont

from .resources import ResourceFetchError, fetch_bytes
from .storage import write_atomic

logger = logging.getLogger("certcat.render")

FONT_CATEGORIES: dict[str, tuple[str, ...]] = {
    "Script": ("Great Vibes", "Dancing Script", "Pacifico"),
    "Serif": ("Playfair Display", "Merriweather", "Lora"),
    "Sans Serif": ("Inter", "Roboto", "Open Sans", "Poppins", "Montserrat"),
    "Display": ("Oswald", "Bebas Neue"),
}

# Families published in a single regular weight.
_SINGLE_WEIGHT = {"great vibes", "pacifico", "bebas neue"}

_FONTSOURCE_URL = (
    "https://cdn.jsdelivr.net/fontsource/fonts/{slug}@latest/latin-{weight}-{style}.ttf"
)

_SERIF_HINTS = ("playfair", "merriweather", "lora", "times", "georgia", "garamond")

_DEJAVU_DIR = "/usr/share/fonts/truetype/dejavu"
_RASTER_FALLBACKS = {
    (False, False): "DejaVuSans.ttf",
    (True, False): "DejaVuSans-Bold.ttf",
    (False, True): "DejaVuSans-Oblique.ttf",
    (True, True): "DejaVuSans-BoldOblique.ttf",
}
_RASTER_SERIF_FALLBACKS = {
    (False, False): "DejaVuSerif.ttf",
    (True, False): "DejaVuSerif-Bold.ttf",
    (False, True): "DejaVuSerif-Italic.ttf",
    (True, True): "DejaVuSerif-BoldItalic.ttf",
}


class FontKey(NamedTuple):
    family: str
    bold: bool
    italic: bool

    @property
    def label(self) -> str:
        parts = [self.family]
        if self.bold:
            parts.append("bold")
        if self.italic:
            parts.append("italic")
        return " ".join(parts)


def all_families() -> list[str]:
    return [name for names in FONT_CATEGORIES.values() for name in names]


def font_key(element: dict) -> FontKey:
    weight = str(element.get("fontWeight") or "normal").lower()
    bold = weight == "bold" or (weight.isdigit() and int(weight) >= 700)
    italic = str(element.get("fontStyle") or "normal").lower() == "italic"
    family = str(element.get("fontFamily") or "").strip()
    return FontKey(family, bold, italic)


def _catalog_match(family: str) -> str | None:
    wanted = family.strip().strip("\"'").strip().lower()
    if not wanted:
        return None
    for name in all_families():
        if wanted == name.lower():
            return name
    return None


def font_url(key: FontKey) -> str | None:
    """Remote TTF for a catalogue family, ``None`` for unknown families."""
    name = _catalog_match(key.family)
    if not name:
        return None
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    single = name.lower() in _SINGLE_WEIGHT
    weight = 400 if single or not key.bold else 700
    style = "italic" if key.italic and not single else "normal"
    return _FONTSOURCE_URL.format(slug=slug, weight=weight, style=style)


def is_serif(family: str) -> bool:
    lowered = (family or "").lower()
    if any(hint in lowered for hint in _SERIF_HINTS):
        return True
    return "serif" in lowered and "sans" not in lowered


def fallback_pdf_font(key: FontKey) -> str:
    """One of the built-in Times or Helvetica faces for ``key``."""
    if is_serif(key.family):
        return {
            (False, False): "Times-Roman",
            (True, False): "Times-Bold",
            (False, True): "Times-Italic",
            (True, True): "Times-BoldItalic",
        }[(key.bold, key.italic)]
    return {
        (False, False): "Helvetica",
        (True, False): "Helvetica-Bold",
        (False, True): "Helvetica-Oblique",
        (True, True): "Helvetica-BoldOblique",
    }[(key.bold, key.italic)]


def pdf_font_name(key: FontKey) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "", key.family) or "Font"
    suffix = ("-Bold" if key.bold else "") + ("-Italic" if key.italic else "")
    return f"CC-{slug}{suffix}"


class FontStore:
    """Downloads catalogue fonts once and keeps them in a disk cache."""

    def __init__(
        self,
        cache_dir: str | None = None,
        fetch: Callable[[str], bytes] | None = None,
    ) -> None:
        self.cache_dir = cache_dir
        self._fetch = fetch or fetch_bytes

    def _cache_path(self, url: str) -> str | None:
        if not self.cache_dir:
            return None
        digest = hashlib.sha256(url.encode()).hexdigest()[:24]
        return os.path.join(self.cache_dir, f"{digest}.ttf")

    def load(self, key: FontKey) -> bytes | None:
        url = font_url(key)
        if not url:
            return None
        path = self._cache_path(url)
        if path and os.path.isfile(path):
            with open(path, "rb") as handle:
                return handle.read()
        try:
            data = self._fetch(url)
        except ResourceFetchError as exc:
            logger.warning("[FONT] fetch failed family=%s error=%s", key.label, exc)
            return None
        if path:
            try:
                write_atomic(path, data)
            except OSError as exc:
                logger.warning("[FONT] cache write failed path=%s error=%s", path, exc)
        return data


def register_pdf_font(key: FontKey, data: bytes) -> str | None:
    """Register TTF bytes with reportlab and return the face name."""
    name = pdf_font_name(key)
    if name in pdfmetrics.getRegisteredFontNames():
        return name
    try:
        pdfmetrics.registerFont(TTFont(name, BytesIO(data)))
    except Exception as exc:
        logger.warning("[FONT] unusable font data family=%s error=%s", key.label, exc)
        return None
    return name


def raster_font(key: FontKey, size_px: float, data: bytes | None = None):
    """A Pillow font for preview drawing.

    Uses downloaded bytes when given, then the DejaVu face matching the
    serif heuristic, then Pillow's bundled default font.
    """
    size = max(int(round(size_px)), 1)
    if data:
        try:
            return ImageFont.truetype(BytesIO(data), size)
        except OSError as exc:
            logger.warning("[FONT] raster load failed family=%s error=%s", key.label, exc)
    table = _RASTER_SERIF_FALLBACKS if is_serif(key.family) else _RASTER_FALLBACKS
    path = os.path.join(_DEJAVU_DIR, table[(key.bold, key.italic)])
    try:
        return ImageFont.truetype(path, size)
    except OSError:
        return ImageFont.load_default(size=size)
