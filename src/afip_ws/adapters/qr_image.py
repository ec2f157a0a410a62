"""QR image rendering: PNG of the compliance URL, base64-encoded for JSON transport."""

from __future__ import annotations

import base64
from io import BytesIO

import qrcode
from qrcode.constants import ERROR_CORRECT_M
from railway import ErrorCode, Result

from afip_ws.domain.models import QrPayload
from afip_ws.domain.qr import qr_url


def render_png(data: str, box_size: int = 6, border: int = 4) -> bytes:
    image = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=box_size, border=border)
    image.add_data(data)
    image.make(fit=True)
    buffer = BytesIO()
    image.make_image().save(buffer, format="PNG")
    return buffer.getvalue()


def render_qr_png_base64(payload: QrPayload) -> Result[str]:
    return Result.from_computation(
        lambda: base64.b64encode(render_png(qr_url(payload))).decode("ascii"),
        ErrorCode.CONFIGURATION_ERROR,
        "Failed to render QR image",
    )
