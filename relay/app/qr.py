"""Render pairing payloads as QR images."""
from __future__ import annotations

import base64
import io

import qrcode
from PIL import Image

from .config import QrSettings
from .state import PairingCredential


def render_png(payload: str, *, width: int = 400, margin: int = 2) -> bytes:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=margin,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="#000000", back_color="#FFFFFF").convert("RGB")
    if width > 0 and img.size != (width, width):
        img = img.resize((width, width), Image.NEAREST)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def to_data_url(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


def render_ascii(payload: str) -> str:
    """Compact terminal rendering, for operators tailing the logs."""
    qr = qrcode.QRCode(border=1)
    qr.add_data(payload)
    qr.make(fit=True)
    out = io.StringIO()
    qr.print_ascii(out=out, invert=True)
    return out.getvalue()


def build_credential(payload: str, settings: QrSettings) -> PairingCredential:
    png = render_png(payload, width=settings.width, margin=settings.margin)
    return PairingCredential(raw=payload, data_url=to_data_url(png), png=png)


__all__ = ["build_credential", "render_ascii", "render_png", "to_data_url"]
