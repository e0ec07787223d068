"""Orchestrates generate, fetch and upload for an admitted prompt."""

from __future__ import annotations

import logging
import secrets

from .aiservices.imagegenerationclient import ImageGenerationClient
from .errors import GenerationError
from .uploadservice.imageuploader import ImageUploader, new_object_name

logger = logging.getLogger(__name__)


def new_seed() -> int:
    """Return an unsigned 32-bit seed read big-endian from 4 random bytes."""
    return int.from_bytes(secrets.token_bytes(4), "big")


class ImageRelayService:
    """High-level orchestrator for the generation backend and the image host."""

    def __init__(self, image_client: ImageGenerationClient, uploader: ImageUploader) -> None:
        self._image_client = image_client
        self._uploader = uploader

    def generate(self, prompt: str) -> str:
        """Generate an image for ``prompt`` and return the hosted URL.

        No step is retried. Whatever goes wrong is logged here and surfaces
        to the caller as a bare :class:`GenerationError`.
        """
        seed = new_seed()
        try:
            image = self._image_client.generate(prompt, seed)
        except Exception as exc:
            logger.exception("Image generation failed for prompt '%s' (seed %s)", prompt, seed)
            raise GenerationError(f"generation failed: {exc}") from exc

        name = new_object_name()
        try:
            url = self._uploader.upload(image, name)
        except Exception as exc:
            logger.exception("Upload of %s failed", name)
            raise GenerationError(f"upload failed: {exc}") from exc

        logger.info("Generated and hosted %s", url)
        return url

    def close(self) -> None:
        self._image_client.close()
        self._uploader.close()
