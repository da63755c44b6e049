import pytest

from certcat.shared.elements import (
    normalize_color,
    opacity_fraction,
    sanitize_element,
    sanitize_elements,
    sanitize_settings,
)
from certcat.shared.layout import BoxGeometry, TextGeometry, layout


def test_malformed_numbers_fall_back_to_defaults():
    element = sanitize_element({"type": "text", "x": "abc", "y": None, "fontSize": -4})
    assert element["x"] == 50.0
    assert element["y"] == 50.0
    assert element["fontSize"] == 20.0
    assert element["opacity"] == 100
    assert element["visible"] is True


def test_zero_position_and_opacity_are_kept():
    element = sanitize_element({"type": "qrcode", "x": 0, "y": 0, "opacity": 0})
    assert (element["x"], element["y"]) == (0.0, 0.0)
    assert element["opacity"] == 0
    assert opacity_fraction(element) == 0.0


def test_unknown_types_are_dropped():
    cleaned = sanitize_elements(
        [{"type": "shape"}, "nope", {"type": "TEXT", "value": "Hi"}]
    )
    assert [el["type"] for el in cleaned] == ["text"]
    assert cleaned[0]["name"] == "Text 3"


def test_image_height_defaults_to_width():
    element = sanitize_element({"type": "image", "src": "x.png", "width": 150})
    assert element["height"] == 150
    geom = layout(element, 2.0)
    assert isinstance(geom, BoxGeometry)
    assert (geom.width, geom.height) == (300.0, 300.0)


def test_numeric_font_weight_maps_to_bold():
    assert sanitize_element({"type": "text", "fontWeight": "700"})["fontWeight"] == "bold"
    assert sanitize_element({"type": "text", "fontWeight": "300"})["fontWeight"] == "normal"


@pytest.mark.parametrize(
    "raw, expected",
    [("#ABC", "#aabbcc"), ("123456", "#123456"), ("red", "#000000"), (None, "#000000")],
)
def test_normalize_color(raw, expected):
    assert normalize_color(raw) == expected


def test_settings_only_accept_presets():
    assert sanitize_settings({"outputWidth": 2526})["outputHeight"] == 1785
    assert sanitize_settings({"outputWidth": 1000})["outputWidth"] == 1684
    assert sanitize_settings(None)["qrCodeSize"] == 80


def test_text_layout_scales_font_and_spacing():
    geom = layout({"type": "text", "x": 50, "y": 50, "fontSize": 30, "letterSpacing": 2}, 0.5)
    assert isinstance(geom, TextGeometry)
    assert geom.font_size == 15
    assert geom.letter_spacing == 1
    assert geom.center_x == pytest.approx(210.5)


def test_qr_box_is_square_and_centered():
    geom = layout({"type": "qrcode", "x": 50, "y": 50, "size": 80}, 1.0)
    assert geom.left == pytest.approx(421 - 40)
    assert geom.top == pytest.approx(297.5 - 40)
    assert geom.width == geom.height == 80
