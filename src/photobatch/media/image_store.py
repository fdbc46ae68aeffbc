"""Staging area for source images and the output directory for results."""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from uuid import uuid4

from fastapi import UploadFile

from ..exceptions import ResourceError, ValidationError

CHUNK_SIZE = 1 * 1024 * 1024  # 1 MiB
IMAGE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")
ALLOWED_SUFFIXES = frozenset({".jpg", ".jpeg", ".png", ".bmp", ".tiff", ".tif", ".webp"})


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def new_image_id() -> str:
    return f"img_{uuid4().hex}"


@dataclass(slots=True)
class ImageStore:
    """Owns ``temp/<image_id><suffix>`` and ``output/<job_id>.jpg`` files."""

    temp_dir: Path
    output_dir: Path
    log: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    def ensure_structure(self) -> None:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def stage_file(self, source: Path) -> str:
        """Copy a local file into the staging area and return its image id."""
        if not source.is_file():
            raise ResourceError(f"source file '{source}' does not exist")
        image_id = new_image_id()
        target = self.temp_dir / f"{image_id}{_normalise_suffix(source.name)}"
        self.ensure_structure()
        try:
            shutil.copyfile(source, target)
        except OSError as exc:
            raise ResourceError(f"failed to stage '{source}': {exc}") from exc
        self.log.info(
            "media.staged",
            extra={"image_id": image_id, "source": str(source), "path": str(target)},
        )
        return image_id

    def stage_bytes(self, data: bytes, *, filename: str | None = None) -> str:
        if not data:
            raise ValidationError("image payload is empty")
        image_id = new_image_id()
        target = self.temp_dir / f"{image_id}{_normalise_suffix(filename)}"
        self.ensure_structure()
        target.write_bytes(data)
        self.log.info("media.staged", extra={"image_id": image_id, "path": str(target)})
        return image_id

    async def stage_upload(self, upload: UploadFile) -> str:
        """Stream an uploaded file into the staging area."""
        image_id = new_image_id()
        target = self.temp_dir / f"{image_id}{_normalise_suffix(upload.filename)}"
        self.ensure_structure()
        size = 0
        with target.open("wb") as sink:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                sink.write(chunk)
        if size == 0:
            target.unlink(missing_ok=True)
            raise ValidationError("image payload is empty")
        self.log.info(
            "media.upload.staged",
            extra={"image_id": image_id, "path": str(target), "size": size},
        )
        return image_id

    def source_path(self, image_id: str) -> Path:
        if not IMAGE_ID_PATTERN.match(image_id):
            raise ResourceError(f"invalid image id '{image_id}'")
        matches = sorted(self.temp_dir.glob(f"{image_id}.*"))
        if not matches:
            raise ResourceError(f"staged image '{image_id}' not found")
        return matches[0]

    def read_source(self, image_id: str) -> bytes:
        path = self.source_path(image_id)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ResourceError(f"failed to read staged image '{image_id}': {exc}") from exc

    def remove_staged(self, image_id: str) -> None:
        if not IMAGE_ID_PATTERN.match(image_id):
            return
        for path in self.temp_dir.glob(f"{image_id}.*"):
            path.unlink(missing_ok=True)

    def output_path(self, job_id: str) -> Path:
        return self.output_dir / f"{job_id}.jpg"

    def thumbnail_path(self, job_id: str) -> Path:
        return self.output_dir / f"{job_id}_thumb.jpg"

    def partial_path(self, job_id: str) -> Path:
        return self.output_dir / f"{job_id}.jpg.part"

    def write_output(self, job_id: str, data: bytes) -> Path:
        """Write via a ``.part`` file so readers never see a half-written result."""
        self.ensure_structure()
        partial = self.partial_path(job_id)
        target = self.output_path(job_id)
        try:
            partial.write_bytes(data)
            os.replace(partial, target)
        except OSError as exc:
            partial.unlink(missing_ok=True)
            raise ResourceError(f"failed to write output for job '{job_id}': {exc}") from exc
        return target

    def write_thumbnail(self, job_id: str, data: bytes) -> Path:
        target = self.thumbnail_path(job_id)
        try:
            target.write_bytes(data)
        except OSError as exc:
            raise ResourceError(f"failed to write thumbnail for job '{job_id}': {exc}") from exc
        return target

    def discard_partial(self, job_id: str) -> None:
        self.partial_path(job_id).unlink(missing_ok=True)

    def remove_outputs(self, job_id: str) -> None:
        for path in (self.output_path(job_id), self.thumbnail_path(job_id), self.partial_path(job_id)):
            path.unlink(missing_ok=True)


def _normalise_suffix(filename: str | None) -> str:
    if not filename:
        return ".jpg"
    suffix = Path(filename).suffix.lower()
    return suffix if suffix in ALLOWED_SUFFIXES else ".jpg"
