import pytest

from certcat.shared.coordinates import (
    CANVAS_HEIGHT,
    CANVAS_WIDTH,
    center_point,
    flip_y,
    height_for_width,
    pixel_to_percent,
    scale_for_width,
)


def test_scale_is_width_over_canvas_width():
    assert scale_for_width(842) == 1.0
    assert scale_for_width(1684) == 2.0
    assert scale_for_width(421) == 0.5


@pytest.mark.parametrize("width", [0, -10, "abc", None])
def test_scale_rejects_unusable_widths(width):
    with pytest.raises(ValueError):
        scale_for_width(width)


def test_center_point_uses_both_canvas_dimensions():
    point = center_point(50, 25, scale_for_width(1000))
    assert point.x == pytest.approx(500.0)
    assert point.y == pytest.approx(0.25 * CANVAS_HEIGHT * 1000 / CANVAS_WIDTH)


def test_corners_map_to_surface_corners():
    assert center_point(0, 0, 2.0) == (0.0, 0.0)
    assert center_point(100, 100, 2.0) == (CANVAS_WIDTH * 2.0, CANVAS_HEIGHT * 2.0)


def test_pixel_to_percent_inverts_center_point():
    scale = scale_for_width(1000)
    point = center_point(37.5, 62.0, scale)
    back = pixel_to_percent(point.x, point.y, 1000, CANVAS_HEIGHT * scale)
    assert back.x == pytest.approx(37.5)
    assert back.y == pytest.approx(62.0)


def test_pixel_to_percent_clamps_outside_the_canvas():
    assert pixel_to_percent(-20, 900, 842, 595) == (0.0, 100.0)


def test_flip_y_and_height():
    assert flip_y(0) == CANVAS_HEIGHT
    assert flip_y(CANVAS_HEIGHT) == 0
    assert flip_y(100) == CANVAS_HEIGHT - 100
    assert height_for_width(842) == 595
    assert height_for_width(1684) == 1190


@pytest.mark.parametrize("scale", [0.25, 1.0, 4.0])
def test_centered_element_lands_on_canvas_center(scale):
    point = center_point(50, 50, scale)
    assert point.x == CANVAS_WIDTH * scale / 2
    assert point.y == CANVAS_HEIGHT * scale / 2
