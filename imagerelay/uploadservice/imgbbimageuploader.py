from __future__ import annotations

import base64
import logging
from typing import Optional

import httpx

from ..config import Settings
from .imageuploader import ImageUploader, ImageUploadError

logger = logging.getLogger(__name__)


class ImgbbImageUploader(ImageUploader):
    """Uploads to an ImgBB-compatible image hosting API."""

    def __init__(self, settings: Settings, http_client: Optional[httpx.Client] = None) -> None:
        self.api_url = settings.imgbb_api_url
        self._api_key = settings.imgbb_api_key.get_secret_value()
        if not self._api_key:
            raise ValueError("imgbb_api_key must be configured for the imgbb upload provider")
        self._client = http_client or httpx.Client(timeout=settings.http_timeout_seconds)

    def upload(self, data: bytes, name: str) -> str:
        # The service wants a bare name; the path prefix is only meaningful for buckets.
        form = {
            "key": self._api_key,
            "image": base64.b64encode(data).decode("ascii"),
            "name": name.rsplit("/", 1)[-1].rsplit(".", 1)[0],
        }
        try:
            resp = self._client.post(self.api_url, data=form)
        except httpx.HTTPError as e:
            raise ImageUploadError(f"Image host upload failed: {e}") from e

        if not resp.is_success:
            raise ImageUploadError(f"Image host returned HTTP {resp.status_code}")

        try:
            url = resp.json()["data"]["url"]
        except (ValueError, KeyError, TypeError) as e:
            raise ImageUploadError(f"Unexpected image host response: {e!r}") from e
        if not url:
            raise ImageUploadError("Image host response carried an empty URL")
        logger.debug("Uploaded %s bytes to image host as %s", len(data), url)
        return url

    def close(self) -> None:
        self._client.close()
