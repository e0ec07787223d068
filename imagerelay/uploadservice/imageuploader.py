from __future__ import annotations

import secrets
import time
from abc import ABC, abstractmethod

from ..config import Settings


class ImageUploadError(RuntimeError):
    """Raised when the hosting destination rejects or fails an upload."""


def new_object_name(prefix: str = "images", extension: str = "jpeg") -> str:
    """Return a fresh, time-derived name such as ``images/1760870400123-9f2c1ab0.jpeg``."""
    return f"{prefix}/{time.time_ns() // 1_000_000}-{secrets.token_hex(4)}.{extension}"


class ImageUploader(ABC):
    """Abstract interface for a hosting destination.

    ``upload`` stores the bytes and returns a URL anyone can fetch them from.
    """

    @abstractmethod
    def upload(self, data: bytes, name: str) -> str:
        """Store ``data`` under ``name`` and return its public URL."""

    def close(self) -> None:  # pragma: no cover - interface
        """Release network resources held by the uploader."""


def create_image_uploader(settings: Settings) -> ImageUploader:
    if settings.upload_provider == "imgbb":
        from .imgbbimageuploader import ImgbbImageUploader

        return ImgbbImageUploader(settings)
    from .s3imageuploader import S3ImageUploader

    return S3ImageUploader(settings)
