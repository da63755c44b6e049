"""The editor, raster preview and PDF export agree on where elements land.

Centers are measured from the rendered output: ink bounding boxes on the
preview raster, text matrices and image transforms in the PDF content
stream. Text runs are compared by the middle of their advance and of
the font's ascent/descent box.
"""

from io import BytesIO

import pytest
from PIL import Image, ImageOps
from PyPDF2 import PdfReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.pdfmetrics import stringWidth

from certcat.services.editor import EditorSession
from certcat.services.export import export_certificate_pdf
from certcat.services.preview import render_preview
from certcat.shared.coordinates import CANVAS_HEIGHT, CANVAS_WIDTH
from certcat.shared.fonts import font_key, raster_font
from certcat.shared.layout import layout
from conftest import OfflineFetch, png_bytes, png_data_url

WIDTH = 1000
SCALE = WIDTH / CANVAS_WIDTH
TOLERANCE_PX = 2.0

ELEMENTS = [
    {"type": "text", "value": "CERTIFICATE", "x": 50, "y": 18, "fontSize": 36},
    {"type": "text", "value": "HELLO WORLD", "x": 50, "y": 45, "fontSize": 48},
    {"type": "text", "value": "ISSUED", "x": 20, "y": 62, "fontSize": 12},
    {"type": "image", "src": "https://img.example.com/seal.png", "x": 15, "y": 80, "width": 90},
    {"type": "image", "src": "https://img.example.com/wide.png", "x": 60, "y": 85, "width": 120, "height": 40},
    {"type": "qrcode", "x": 90, "y": 82, "size": 80, "qrDataUrl": png_data_url((60, 60))},
]
SPACED = {"type": "text", "value": "AWARD", "x": 40, "y": 30, "fontSize": 30, "letterSpacing": 4}


@pytest.fixture
def fetch():
    return OfflineFetch(
        {
            "https://img.example.com/seal.png": png_bytes((50, 50)),
            "https://img.example.com/wide.png": png_bytes((90, 30)),
        }
    )


def _editor_centers(elements):
    return {p.index: (p.center_x, p.center_y) for p in EditorSession(elements).geometry(WIDTH)}


def _ink_box(result):
    img = Image.open(BytesIO(result.png)).convert("L")
    return ImageOps.invert(img).getbbox()


def _preview_center(element, fetch):
    result = render_preview([element], None, width=WIDTH, fetch=fetch)
    left, top, right, bottom = _ink_box(result)
    ink_x, ink_y = (left + right) / 2.0, (top + bottom) / 2.0
    if element["type"] != "text":
        return ink_x, ink_y
    font = raster_font(font_key(element), layout(element, SCALE).font_size)
    g_left, g_top, g_right, g_bottom = font.getbbox(element["value"], anchor="mm")
    return ink_x - (g_left + g_right) / 2.0, ink_y - (g_top + g_bottom) / 2.0


def _pdf_placements(pdf_bytes, elements):
    """Screen-space centers of every text run and image drawn on the page."""
    page = PdfReader(BytesIO(pdf_bytes)).pages[0]
    texts = {el["value"]: el for el in elements if el["type"] == "text"}
    text_centers = {}
    boxes = []

    def visitor_text(text, cm, tm, font_dict, font_size):
        text = text.strip()
        if text not in texts:
            return
        element = texts[text]
        font_name = str(font_dict["/BaseFont"])[1:] if font_dict else "Helvetica"
        size = element["fontSize"]
        advance = stringWidth(text, font_name, size) + element.get("letterSpacing", 0) * len(text)
        ascent, descent = pdfmetrics.getAscentDescent(font_name, size)
        x = tm[4] + advance / 2.0
        y = tm[5] + (ascent + descent) / 2.0
        text_centers[text] = (x, CANVAS_HEIGHT - y)

    def visitor_before(operator, args, cm, tm):
        if operator == b"Do":
            width, height = cm[0], cm[3]
            boxes.append((cm[4] + width / 2.0, CANVAS_HEIGHT - (cm[5] + height / 2.0)))

    page.extract_text(visitor_text=visitor_text, visitor_operand_before=visitor_before)
    return text_centers, boxes


def _close(a, b):
    return abs(a[0] - b[0]) <= TOLERANCE_PX and abs(a[1] - b[1]) <= TOLERANCE_PX


@pytest.mark.parametrize("index", range(len(ELEMENTS)))
def test_preview_draws_on_editor_center(index, fetch):
    element = ELEMENTS[index]
    expected = _editor_centers([element])[0]
    measured = _preview_center(element, fetch)
    assert _close(measured, expected), (measured, expected)


def test_export_draws_on_editor_centers(fetch):
    elements = [*ELEMENTS, SPACED]
    editor = _editor_centers(elements)
    result = export_certificate_pdf(elements, None, fetch=fetch)
    text_centers, boxes = _pdf_placements(result.pdf, elements)

    box_iter = iter(boxes)
    assert len(boxes) == sum(1 for el in elements if el["type"] != "text")
    for index, element in enumerate(elements):
        if element["type"] == "text":
            x, y = text_centers[element["value"]]
        else:
            x, y = next(box_iter)
        measured = (x * SCALE, y * SCALE)
        assert _close(measured, editor[index]), (element, measured, editor[index])


def test_preview_scales_linearly(fetch):
    element = ELEMENTS[3]
    small = render_preview([element], None, width=842, fetch=fetch)
    large = render_preview([element], None, width=1684, fetch=fetch)
    s_left, s_top, s_right, s_bottom = _ink_box(small)
    l_left, l_top, l_right, l_bottom = _ink_box(large)
    assert (l_left + l_right) / 2.0 == pytest.approx(s_left + s_right, abs=2)
    assert (l_top + l_bottom) / 2.0 == pytest.approx(s_top + s_bottom, abs=2)
