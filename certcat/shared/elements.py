from __future__ import annotations

import re
from copy import deepcopy
from typing import Any, Iterable

ELEMENT_TYPES: tuple[str, ...] = ("text", "image", "qrcode")

DEFAULT_X = 50.0
DEFAULT_Y = 50.0
DEFAULT_FONT_SIZE = 20.0
DEFAULT_IMAGE_WIDTH = 100.0
DEFAULT_QR_SIZE = 80.0
DEFAULT_OPACITY = 100
DEFAULT_COLOR = "#000000"
DEFAULT_FONT_FAMILY = "Helvetica"

FONT_WEIGHTS = ("normal", "bold")
FONT_STYLES = ("normal", "italic")

OUTPUT_PRESETS: list[dict[str, Any]] = [
    {"label": "Standard", "width": 842, "height": 595},
    {"label": "High Quality", "width": 1684, "height": 1190},
    {"label": "Print Quality", "width": 2526, "height": 1785},
]

_DEFAULT_SETTINGS = {
    "outputWidth": 1684,
    "outputHeight": 1190,
    "qrCodeSize": DEFAULT_QR_SIZE,
}

_HEX_COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def to_number(value: Any, default: float) -> float:
    """Coerce a stored attribute to a finite float, else ``default``."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number or number in (float("inf"), float("-inf")):
        return default
    return number


def to_positive(value: Any, default: float) -> float:
    number = to_number(value, default)
    return number if number > 0 else default


def to_percent(value: Any, default: float) -> float:
    number = to_number(value, default)
    return max(0.0, min(100.0, number))


def normalize_color(value: Any) -> str:
    match = _HEX_COLOR_RE.match(str(value or "").strip())
    if not match:
        return DEFAULT_COLOR
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    return f"#{digits.lower()}"


def hex_to_rgb(value: Any) -> tuple[int, int, int]:
    digits = normalize_color(value)[1:]
    return (int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))


def opacity_fraction(element: dict) -> float:
    opacity = to_number(element.get("opacity"), DEFAULT_OPACITY)
    return max(0.0, min(100.0, opacity)) / 100.0


def is_visible(element: dict) -> bool:
    return element.get("visible") is not False


def image_height(element: dict, width: float) -> float:
    """Stored height, or the width when none is stored (square)."""
    if element.get("height") in (None, ""):
        return width
    return to_positive(element.get("height"), width)


def sanitize_element(raw: Any, index: int = 0) -> dict | None:
    """Return a clean element dict, or ``None`` when the type is unknown.

    Numeric attributes that are missing or malformed fall back to the
    defaults so a bad element renders centered and default-sized.
    """
    if not isinstance(raw, dict):
        return None
    el_type = str(raw.get("type") or "").strip().lower()
    if el_type not in ELEMENT_TYPES:
        return None

    element: dict[str, Any] = {
        "type": el_type,
        "x": to_percent(raw.get("x"), DEFAULT_X),
        "y": to_percent(raw.get("y"), DEFAULT_Y),
        "opacity": int(round(to_percent(raw.get("opacity"), DEFAULT_OPACITY))),
        "visible": raw.get("visible") is not False,
        "locked": bool(raw.get("locked")),
        "name": str(raw.get("name") or f"{el_type.title()} {index + 1}"),
    }

    if el_type == "text":
        weight = str(raw.get("fontWeight") or "normal").lower()
        style = str(raw.get("fontStyle") or "normal").lower()
        element.update(
            {
                "value": str(raw.get("value") or ""),
                "fontSize": to_positive(raw.get("fontSize"), DEFAULT_FONT_SIZE),
                "fontFamily": str(raw.get("fontFamily") or DEFAULT_FONT_FAMILY),
                "fontWeight": weight if weight in FONT_WEIGHTS else _weight_from_number(weight),
                "fontStyle": style if style in FONT_STYLES else "normal",
                "color": normalize_color(raw.get("color")),
                "letterSpacing": to_number(raw.get("letterSpacing"), 0.0),
            }
        )
    elif el_type == "image":
        width = to_positive(raw.get("width"), DEFAULT_IMAGE_WIDTH)
        element.update(
            {
                "src": str(raw.get("src") or ""),
                "width": width,
                "height": image_height(raw, width),
            }
        )
        ratio = to_number(raw.get("aspectRatio"), 0.0)
        if ratio > 0:
            element["aspectRatio"] = ratio
    else:
        element["size"] = to_positive(raw.get("size"), DEFAULT_QR_SIZE)
        for key in ("qrDataUrl", "qrUrl", "value"):
            if raw.get(key):
                element[key] = str(raw[key])
    return element


def _weight_from_number(value: str) -> str:
    try:
        return "bold" if int(value) >= 700 else "normal"
    except ValueError:
        return "normal"


def sanitize_elements(values: Iterable[Any] | None) -> list[dict]:
    cleaned: list[dict] = []
    for index, raw in enumerate(values or []):
        element = sanitize_element(raw, index)
        if element is not None:
            cleaned.append(element)
    return cleaned


def sanitize_settings(settings: Any) -> dict:
    config = deepcopy(_DEFAULT_SETTINGS)
    if not isinstance(settings, dict):
        return config
    width = to_number(settings.get("outputWidth"), 0)
    for preset in OUTPUT_PRESETS:
        if int(width) == preset["width"]:
            config["outputWidth"] = preset["width"]
            config["outputHeight"] = preset["height"]
            break
    config["qrCodeSize"] = to_positive(settings.get("qrCodeSize"), DEFAULT_QR_SIZE)
    return config
