"""In-memory image fixtures built with Pillow."""

from __future__ import annotations

import base64
import io

from PIL import Image


def make_jpeg(width: int = 64, height: int = 48, color: tuple[int, int, int] = (200, 40, 40)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="JPEG")
    return buffer.getvalue()


def make_png(width: int = 32, height: int = 32) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", (width, height), (0, 128, 255, 128)).save(buffer, format="PNG")
    return buffer.getvalue()


def jpeg_base64(width: int = 64, height: int = 48) -> str:
    return base64.b64encode(make_jpeg(width, height, (20, 160, 60))).decode("ascii")
