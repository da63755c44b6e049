from __future__ import annotations

from dataclasses import dataclass

from .coordinates import center_point
from .elements import (
    DEFAULT_FONT_SIZE,
    DEFAULT_IMAGE_WIDTH,
    DEFAULT_QR_SIZE,
    DEFAULT_X,
    DEFAULT_Y,
    image_height,
    to_number,
    to_percent,
    to_positive,
)


@dataclass(frozen=True)
class TextGeometry:
    center_x: float
    center_y: float
    font_size: float
    letter_spacing: float


@dataclass(frozen=True)
class BoxGeometry:
    center_x: float
    center_y: float
    width: float
    height: float

    @property
    def left(self) -> float:
        return self.center_x - self.width / 2.0

    @property
    def top(self) -> float:
        return self.center_y - self.height / 2.0


def element_center(element: dict, scale: float = 1.0):
    return center_point(
        to_percent(element.get("x"), DEFAULT_X),
        to_percent(element.get("y"), DEFAULT_Y),
        scale,
    )


def layout(element: dict, scale: float = 1.0) -> TextGeometry | BoxGeometry:
    """Concrete geometry for one element on a surface of the given scale.

    Text returns its center and scaled font size; centering the glyph run
    on that point is left to the renderer.  Images and QR codes return a
    box whose ``left``/``top`` is the center minus half the size.
    """
    cx, cy = element_center(element, scale)
    el_type = element.get("type")
    if el_type == "text":
        return TextGeometry(
            center_x=cx,
            center_y=cy,
            font_size=to_positive(element.get("fontSize"), DEFAULT_FONT_SIZE) * scale,
            letter_spacing=to_number(element.get("letterSpacing"), 0.0) * scale,
        )
    if el_type == "image":
        width = to_positive(element.get("width"), DEFAULT_IMAGE_WIDTH)
        height = image_height(element, width)
        return BoxGeometry(cx, cy, width * scale, height * scale)
    if el_type == "qrcode":
        size = to_positive(element.get("size"), DEFAULT_QR_SIZE) * scale
        return BoxGeometry(cx, cy, size, size)
    return BoxGeometry(cx, cy, 0.0, 0.0)


@dataclass(frozen=True)
class Placement:
    """Where a renderer put an element's center, in its own surface units.

    ``center_y`` always grows downward so placements from different
    renderers compare after multiplying by the ratio of their scales.
    """

    index: int
    type: str
    center_x: float
    center_y: float
