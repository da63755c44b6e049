"""Canvas coordinate contract shared by the editor, preview and PDF export.

Element positions are stored as percentages (0-100) of the canvas and name
the element's *center*.  Sizes are stored in points at scale 1.0 on an A4
landscape canvas (842 x 595).  A renderer derives its scale from the width
of the surface it draws on: ``scale = render_width / CANVAS_WIDTH``.
"""

from __future__ import annotations

from typing import NamedTuple

CANVAS_WIDTH = 842
CANVAS_HEIGHT = 595
ASPECT_RATIO = CANVAS_WIDTH / CANVAS_HEIGHT


class Point(NamedTuple):
    x: float
    y: float


def scale_for_width(render_width: float) -> float:
    try:
        width = float(render_width)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid render width: {render_width!r}")
    if width <= 0:
        raise ValueError(f"Render width must be positive, got {render_width!r}")
    return width / CANVAS_WIDTH


def height_for_width(render_width: float) -> int:
    return int(round(render_width / ASPECT_RATIO))


def center_point(x_percent: float, y_percent: float, scale: float = 1.0) -> Point:
    """Surface position of an element center, Y growing downward."""
    return Point(
        (x_percent / 100.0) * CANVAS_WIDTH * scale,
        (y_percent / 100.0) * CANVAS_HEIGHT * scale,
    )


def clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, value))


def pixel_to_percent(
    pixel_x: float, pixel_y: float, surface_width: float, surface_height: float
) -> Point:
    """Inverse of :func:`center_point`, clamped to the canvas."""
    return Point(
        clamp_percent((pixel_x / surface_width) * 100.0),
        clamp_percent((pixel_y / surface_height) * 100.0),
    )


def flip_y(screen_y: float, page_height: float = CANVAS_HEIGHT) -> float:
    """Convert a downward screen Y into an upward page Y (PDF space)."""
    return page_height - screen_y
