from io import BytesIO

import pytest
from PyPDF2 import PdfReader
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from certcat.services.export import ExportError, export_certificate_pdf
from certcat.shared.coordinates import CANVAS_HEIGHT, CANVAS_WIDTH
from conftest import OfflineFetch, png_bytes, png_data_url


def _text(value="Jane Doe", **extra):
    element = {
        "type": "text",
        "value": value,
        "x": 50,
        "y": 50,
        "fontSize": 40,
        "fontFamily": "Helvetica",
        "color": "#112233",
    }
    element.update(extra)
    return element


def _text_positions(pdf_bytes):
    page = PdfReader(BytesIO(pdf_bytes)).pages[0]
    found = []

    def visitor(text, cm, tm, font_dict, font_size):
        if text.strip():
            found.append((text.strip(), tm[4], tm[5]))

    page.extract_text(visitor_text=visitor)
    return found


def test_missing_font_still_produces_one_page_with_text(offline_fetch):
    result = export_certificate_pdf(
        [_text(fontFamily="Nonexistent Script")], None, fetch=offline_fetch
    )
    reader = PdfReader(BytesIO(result.pdf))
    assert len(reader.pages) == 1
    assert "Jane Doe" in reader.pages[0].extract_text()
    assert any(w.startswith("[export-font-fallback]") for w in result.warnings)
    assert "Helvetica" in result.warnings[0]


def test_serif_family_falls_back_to_times(offline_fetch):
    result = export_certificate_pdf(
        [_text(fontFamily="Playfair Display", fontWeight="bold")], None, fetch=offline_fetch
    )
    assert any("Times-Bold" in w for w in result.warnings)


def test_page_is_canvas_sized(offline_fetch):
    result = export_certificate_pdf([_text()], None, fetch=offline_fetch)
    box = PdfReader(BytesIO(result.pdf)).pages[0].mediabox
    assert (float(box.width), float(box.height)) == (CANVAS_WIDTH, CANVAS_HEIGHT)


def test_y_axis_is_flipped(offline_fetch):
    result = export_certificate_pdf(
        [_text("TOP", y=10), _text("BOTTOM", y=90)], None, fetch=offline_fetch
    )
    positions = {text: y for text, _, y in _text_positions(result.pdf)}
    assert positions["TOP"] > CANVAS_HEIGHT / 2
    assert positions["BOTTOM"] < CANVAS_HEIGHT / 2


def test_baseline_sits_just_below_center(offline_fetch):
    result = export_certificate_pdf([_text(y=40, fontSize=40)], None, fetch=offline_fetch)
    (_, x, baseline), = _text_positions(result.pdf)
    center_pdf_y = CANVAS_HEIGHT - 0.40 * CANVAS_HEIGHT
    assert 0 < center_pdf_y - baseline < 0.5 * 40
    assert x < CANVAS_WIDTH / 2


def test_letter_spacing_widens_the_run(offline_fetch):
    plain = export_certificate_pdf([_text()], None, fetch=offline_fetch)
    spaced = export_certificate_pdf([_text(letterSpacing=5)], None, fetch=offline_fetch)
    (_, plain_x, _), = _text_positions(plain.pdf)
    (_, spaced_x, _), = _text_positions(spaced.pdf)
    assert spaced_x == pytest.approx(plain_x - 5 * len("Jane Doe") / 2)


def test_hidden_elements_are_skipped(offline_fetch):
    result = export_certificate_pdf(
        [_text("SHOWN"), _text("HIDDEN", visible=False)], None, fetch=offline_fetch
    )
    text = PdfReader(BytesIO(result.pdf)).pages[0].extract_text()
    assert "SHOWN" in text
    assert "HIDDEN" not in text
    assert [p.index for p in result.placements] == [0]


def test_images_and_qr_are_placed():
    fetch = OfflineFetch({"https://img.example.com/logo.png": png_bytes()})
    elements = [
        {"type": "image", "src": "https://img.example.com/logo.png", "x": 20, "y": 20, "width": 120},
        {"type": "qrcode", "x": 85, "y": 85, "size": 80, "qrDataUrl": png_data_url((30, 30))},
    ]
    result = export_certificate_pdf(elements, None, fetch=fetch)
    assert [p.type for p in result.placements] == ["image", "qrcode"]
    assert result.warnings == ()
    qr = result.placements[1]
    assert qr.center_x == pytest.approx(0.85 * CANVAS_WIDTH)
    assert qr.center_y == pytest.approx(0.85 * CANVAS_HEIGHT)


def test_unreachable_resources_become_warnings(offline_fetch):
    elements = [
        {"type": "image", "src": "https://img.example.com/missing.png"},
        {"type": "qrcode"},
        _text(),
    ]
    result = export_certificate_pdf(
        elements, "https://img.example.com/bg.png", fetch=offline_fetch
    )
    assert "[export-bg-fallback] background unavailable" in result.warnings
    assert any(w.startswith("[export-image-skipped]") for w in result.warnings)
    assert any(w.startswith("[export-qrcode-skipped]") for w in result.warnings)
    assert [p.type for p in result.placements] == ["text"]


def test_raster_background_is_drawn():
    fetch = OfflineFetch({"https://img.example.com/bg.png": png_bytes((842, 595))})
    result = export_certificate_pdf([_text()], "https://img.example.com/bg.png", fetch=fetch)
    assert result.warnings == ()
    page = PdfReader(BytesIO(result.pdf)).pages[0]
    assert "/XObject" in page["/Resources"]


def test_pdf_background_is_scaled_and_merged():
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=letter)
    c.drawString(100, 100, "BACKGROUND")
    c.showPage()
    c.save()
    fetch = OfflineFetch({"https://img.example.com/bg.pdf": buffer.getvalue()})

    result = export_certificate_pdf(
        [_text("Jane Doe")], "https://img.example.com/bg.pdf", title="Jane Doe - PyCon", fetch=fetch
    )
    reader = PdfReader(BytesIO(result.pdf))
    assert len(reader.pages) == 1
    page = reader.pages[0]
    assert (round(float(page.mediabox.width)), round(float(page.mediabox.height))) == (842, 595)
    text = page.extract_text()
    assert "BACKGROUND" in text
    assert "Jane Doe" in text
    assert reader.metadata.title == "Jane Doe - PyCon"


def test_total_failure_raises_export_error(monkeypatch, offline_fetch):
    def broken(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr("certcat.services.export.canvas.Canvas", broken)
    with pytest.raises(ExportError) as excinfo:
        export_certificate_pdf([_text()], None, fetch=offline_fetch)
    assert "Please try again" in str(excinfo.value)
