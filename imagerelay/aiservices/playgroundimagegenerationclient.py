from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..config import GenerationParameters, Settings, get_settings
from .imagegenerationclient import ImageGenerationBackendError, ImageGenerationClient

logger = logging.getLogger(__name__)


class PlaygroundImageGenerationClient(ImageGenerationClient):
    """
    Talks to a Playground-style generation API:
      - POST the JSON payload to ``backend_url`` with the session cookie
      - read ``images[0].imageKey`` from the response
      - download the image from ``image_url_template``
    """

    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[httpx.Client] = None) -> None:
        self.settings = settings or get_settings()
        self._parameters: GenerationParameters = self.settings.generation
        self._client = http_client or httpx.Client(timeout=self.settings.http_timeout_seconds)

    # --- Payload ---------------------------------------------------------------

    def build_payload(self, prompt: str, seed: int) -> dict[str, Any]:
        params = self._parameters
        return {
            "width": params.width,
            "height": params.height,
            "seed": seed,
            "num_images": params.num_images,
            "modelType": self.settings.model_type,
            "sampler": params.sampler,
            "cfg_scale": params.cfg_scale,
            "guidance_scale": params.guidance_scale,
            "strength": params.strength,
            "steps": params.steps,
            "high_noise_frac": params.high_noise_frac,
            "negativePrompt": params.negative_prompt,
            "prompt": prompt,
            "hide": params.hide,
            "isPrivate": params.is_private,
            "batchId": params.batch_id,
            "generateVariants": params.generate_variants,
            "initImageFromPlayground": params.init_image_from_playground,
            "statusUUID": self.settings.status_uuid,
        }

    # --- Generation ------------------------------------------------------------

    def generate(self, prompt: str, seed: int) -> bytes:
        image_key = self._request_image_key(self.build_payload(prompt, seed))
        return self._fetch_image(image_key)

    def close(self) -> None:
        self._client.close()

    # --- Internals -------------------------------------------------------------

    def _request_image_key(self, payload: dict[str, Any]) -> str:
        headers = {"Cookie": self.settings.backend_cookies.get_secret_value()}
        try:
            resp = self._client.post(self.settings.backend_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ImageGenerationBackendError(f"Generation request failed: {e}") from e

        if not resp.is_success:
            raise ImageGenerationBackendError(f"Generation backend returned HTTP {resp.status_code}")

        try:
            body = resp.json()
            image_key = body["images"][0]["imageKey"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ImageGenerationBackendError(f"Unexpected generation response: {e!r}") from e

        if not isinstance(image_key, str) or not image_key:
            raise ImageGenerationBackendError("Generation response carried an empty image key")
        logger.debug("Backend produced image %s", image_key)
        return image_key

    def _fetch_image(self, image_key: str) -> bytes:
        url = self.settings.image_url_template.format(image_key=image_key)
        try:
            resp = self._client.get(url)
        except httpx.HTTPError as e:
            raise ImageGenerationBackendError(f"Image download failed: {e}") from e

        if not resp.is_success:
            raise ImageGenerationBackendError(f"Image host returned HTTP {resp.status_code} for {url}")
        if not resp.content:
            raise ImageGenerationBackendError(f"Image host returned an empty body for {url}")
        return resp.content
