from __future__ import annotations

import base64
import logging
from io import BytesIO

import qrcode
from PIL import Image
from qrcode.image.pil import PilImage

logger = logging.getLogger("certcat.render")

QR_PIXEL_WIDTH = 300
QR_BORDER = 2


def make_qr_png(payload: str) -> bytes:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=QR_BORDER,
        image_factory=PilImage,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    img: PilImage = qr.make_image(fill_color="black", back_color="white")
    pil_image = img.get_image().convert("RGB")
    pil_image = pil_image.resize((QR_PIXEL_WIDTH, QR_PIXEL_WIDTH), Image.NEAREST)
    buffer = BytesIO()
    pil_image.save(buffer, format="PNG")
    return buffer.getvalue()


def make_qr_data_url(payload: str) -> str | None:
    """PNG data URL encoding ``payload``; ``None`` if encoding fails."""
    try:
        png = make_qr_png(payload)
    except Exception:
        logger.exception("[QR] failed to encode payload=%s", payload)
        return None
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")
