from __future__ import annotations

from abc import ABC, abstractmethod


class ImageGenerationBackendError(RuntimeError):
    """Raised when the generation backend or the image host misbehaves."""


class ImageGenerationClient(ABC):
    """Abstract interface for an image generation client.

    Implementations must provide synchronous generation methods
    used by the rest of the application.
    """

    @abstractmethod
    def generate(self, prompt: str, seed: int) -> bytes:
        """Generate an image from a prompt and return its raw bytes."""

    def close(self) -> None:  # pragma: no cover - interface
        """Release network resources held by the client."""
