"""Pillow based resize/re-encode used before dispatch and for thumbnails."""

from __future__ import annotations

import io
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from ..domain.models import Quality, parse_resolution
from ..exceptions import ResourceError

JPEG_QUALITY = {
    Quality.HIGH: 95,
    Quality.BALANCED: 85,
    Quality.FAST: 75,
}
THUMBNAIL_SIZE = (200, 200)
THUMBNAIL_QUALITY = 80


@dataclass(slots=True)
class ImageInfo:
    width: int
    height: int
    format: str


@dataclass(slots=True)
class TranscodedImage:
    data: bytes
    width: int
    height: int


def _open(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ResourceError(f"cannot decode image: {exc}") from exc
    return image


def _to_rgb(image: Image.Image) -> Image.Image:
    image = ImageOps.exif_transpose(image)
    if image.mode != "RGB":
        image = image.convert("RGB")
    return image


def _encode_jpeg(image: Image.Image, quality: int) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality, optimize=True)
    return buffer.getvalue()


class PillowTranscoder:
    """Fit inside the target resolution (never enlarging) and encode as JPEG."""

    def transcode(self, data: bytes, resolution: str, quality: Quality | str) -> TranscodedImage:
        try:
            width, height = parse_resolution(resolution)
        except ValueError as exc:
            raise ResourceError(str(exc)) from exc
        image = _to_rgb(_open(data))
        image.thumbnail((width, height), Image.Resampling.LANCZOS)
        encoded = _encode_jpeg(image, JPEG_QUALITY[Quality(quality)])
        return TranscodedImage(data=encoded, width=image.width, height=image.height)

    def thumbnail(self, data: bytes) -> bytes:
        image = _to_rgb(_open(data))
        fitted = ImageOps.fit(image, THUMBNAIL_SIZE, Image.Resampling.LANCZOS)
        return _encode_jpeg(fitted, THUMBNAIL_QUALITY)

    def describe(self, data: bytes) -> ImageInfo:
        image = _open(data)
        return ImageInfo(width=image.width, height=image.height, format=(image.format or "jpeg").lower())
