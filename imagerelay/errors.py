"""Errors surfaced by the relay's HTTP layer."""

from __future__ import annotations

from typing import Optional

from fastapi import status

MISSING_PROMPT_OR_IP_MESSAGE = "Both prompt and IP address are required."
MISSING_IP_MESSAGE = "IP address is required."
QUOTA_EXCEEDED_MESSAGE = "Daily limit exceeded for free users. Upgrade to pro for unlimited access."
INTERNAL_ERROR_MESSAGE = "Internal server error. Please try again later."


class RelayError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequestError(RelayError):
    status_code = status.HTTP_400_BAD_REQUEST


class QuotaExceededError(RelayError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = QUOTA_EXCEEDED_MESSAGE) -> None:
        super().__init__(message)


class InfrastructureError(RelayError):
    """A collaborator failed.

    The caller always sees the same generic message; ``detail`` is only
    meant for server-side logs.
    """

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(INTERNAL_ERROR_MESSAGE)
        self.detail = detail

    def __str__(self) -> str:
        return self.detail or self.message


class GenerationError(InfrastructureError):
    """The generate, fetch, upload sequence did not produce a URL."""
