"""Product image handling.

An upload becomes a :class:`~shopadmin.models.ProductImage` in one of two
storage modes, fixed per deployment by ``IMAGE_STORAGE``:

* ``inline`` - bytes and content type live in the database row and are sent
  to clients as a ``data:`` URI.
* ``disk`` - bytes are written under ``UPLOAD_DIR`` and the row keeps a
  relative ``/uploads/<file>`` reference.
"""
import base64
import os
import secrets
from dataclasses import dataclass
from typing import Iterable, List

from . import models
from .config import Settings
from .errors import ValidationError
from .log import logger

UPLOAD_URL_PREFIX = "/uploads"

# content type -> accepted file extensions
ALLOWED_TYPES = {
    "image/jpeg": (".jpg", ".jpeg"),
    "image/png": (".png",),
    "image/gif": (".gif",),
    "image/webp": (".webp",),
}
_TYPE_ALIASES = {"image/jpg": "image/jpeg", "image/pjpeg": "image/jpeg"}


@dataclass(frozen=True)
class ImageUpload:
    filename: str
    content_type: str
    data: bytes


def normalize_content_type(content_type: str) -> str:
    ct = (content_type or "").split(";", 1)[0].strip().lower()
    return _TYPE_ALIASES.get(ct, ct)


def to_data_uri(content_type: str, data: bytes) -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


def render(image: models.ProductImage) -> str:
    """Client-facing form of a stored image."""
    if image.kind == "inline":
        return to_data_uri(image.content_type or "application/octet-stream", image.data or b"")
    return image.url


class ImageStore:
    def __init__(self, mode: str, upload_dir: str, max_files: int, max_bytes: int):
        if mode not in ("inline", "disk"):
            raise ValueError(f"unknown image storage mode: {mode}")
        self.mode = mode
        self.upload_dir = upload_dir
        self.max_files = max_files
        self.max_bytes = max_bytes

    @classmethod
    def from_settings(cls, settings: Settings) -> "ImageStore":
        return cls(
            mode=settings.image_storage,
            upload_dir=settings.upload_dir,
            max_files=settings.max_upload_files,
            max_bytes=settings.max_upload_bytes,
        )

    def validate(self, uploads: List[ImageUpload]) -> List[ImageUpload]:
        if len(uploads) > self.max_files:
            raise ValidationError("File upload error", error=f"Too many files (max {self.max_files})")
        checked = []
        for up in uploads:
            ct = normalize_content_type(up.content_type)
            ext = os.path.splitext(up.filename or "")[1].lower()
            if ct not in ALLOWED_TYPES or ext not in ALLOWED_TYPES[ct]:
                raise ValidationError(
                    "File upload error",
                    error="Only image files (jpg, jpeg, png, gif, webp) are allowed",
                )
            if not up.data:
                raise ValidationError("File upload error", error=f"{up.filename} is empty")
            if len(up.data) > self.max_bytes:
                raise ValidationError(
                    "File upload error",
                    error=f"{up.filename} exceeds the {self.max_bytes} byte limit",
                )
            checked.append(ImageUpload(filename=up.filename, content_type=ct, data=up.data))
        return checked

    def store(self, upload: ImageUpload) -> models.ProductImage:
        if self.mode == "inline":
            return models.ProductImage(kind="inline", content_type=upload.content_type, data=upload.data)

        os.makedirs(self.upload_dir, exist_ok=True)
        ext = os.path.splitext(upload.filename)[1].lower()
        name = f"images-{secrets.token_hex(12)}{ext}"
        with open(os.path.join(self.upload_dir, name), "wb") as fh:
            fh.write(upload.data)
        return models.ProductImage(kind="reference", content_type=upload.content_type, url=f"{UPLOAD_URL_PREFIX}/{name}")

    def discard(self, images: Iterable[models.ProductImage]) -> None:
        """Remove files written for images whose database write failed."""
        for image in images:
            if image.kind != "reference" or not image.url:
                continue
            path = os.path.join(self.upload_dir, os.path.basename(image.url))
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError:
                logger.exception("could not remove orphaned upload %s", path)
