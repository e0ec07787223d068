"""FastAPI entry point exposing the image relay."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from .aiservices.playgroundimagegenerationclient import PlaygroundImageGenerationClient
from .config import Settings, get_settings
from .errors import (
    INTERNAL_ERROR_MESSAGE,
    MISSING_IP_MESSAGE,
    MISSING_PROMPT_OR_IP_MESSAGE,
    InvalidRequestError,
    QuotaExceededError,
    RelayError,
)
from .quota import QuotaLedger, QuotaPolicy
from .schemas import ErrorResponse, HealthResponse, ImageResponse, QuotaStatus
from .service import ImageRelayService
from .storageservice.storageservice import StorageService
from .uploadservice.imageuploader import create_image_uploader

logger = logging.getLogger(__name__)


@dataclass
class RelayServices:
    """Everything a request needs, built once at startup."""

    storage: StorageService
    ledger: QuotaLedger
    relay: ImageRelayService

    def close(self) -> None:
        self.relay.close()
        self.storage.close()


def build_services(settings: Settings) -> RelayServices:
    storage = StorageService(settings.database_path, busy_timeout=settings.storage_busy_timeout_seconds)
    ledger = QuotaLedger(storage, QuotaPolicy.from_settings(settings))
    relay = ImageRelayService(
        PlaygroundImageGenerationClient(settings),
        create_image_uploader(settings),
    )
    return RelayServices(storage=storage, ledger=ledger, relay=relay)


def get_quota_ledger(request: Request) -> QuotaLedger:
    return request.app.state.services.ledger


def get_relay_service(request: Request) -> ImageRelayService:
    return request.app.state.services.relay


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


router = APIRouter()

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


@router.get("/", response_class=PlainTextResponse, summary="Liveness probe")
async def root() -> str:
    return "Server is running"


@router.get("/health", response_model=HealthResponse, summary="Health Check Endpoint")
async def healthcheck(settings: Settings = Depends(get_app_settings)):
    return HealthResponse(
        status="ok",
        modelType=settings.model_type,
        uploadProvider=settings.upload_provider,
    )


@router.get(
    "/prompt",
    response_model=ImageResponse,
    responses=_ERROR_RESPONSES,
    summary="Generate an image for a prompt, charging the caller's daily quota",
)
async def prompt_image(
    prompt: Optional[str] = None,
    ip: Optional[str] = None,
    ledger: QuotaLedger = Depends(get_quota_ledger),
    relay: ImageRelayService = Depends(get_relay_service),
):
    if not prompt or not ip:
        raise InvalidRequestError(MISSING_PROMPT_OR_IP_MESSAGE)

    admission = await run_in_threadpool(ledger.admit, ip)
    if not admission.admitted:
        raise QuotaExceededError()

    # The quota unit stays spent even if generation fails below.
    image_url = await run_in_threadpool(relay.generate, prompt)
    return ImageResponse(imageUrl=image_url)


@router.get(
    "/quota",
    response_model=QuotaStatus,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    summary="Report a caller's standing in the current quota window",
)
async def quota_status(
    ip: Optional[str] = None,
    ledger: QuotaLedger = Depends(get_quota_ledger),
):
    if not ip:
        raise InvalidRequestError(MISSING_IP_MESSAGE)
    return await run_in_threadpool(ledger.status, ip)


async def _relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"error": INTERNAL_ERROR_MESSAGE})


def create_app(settings: Optional[Settings] = None, services: Optional[RelayServices] = None) -> FastAPI:
    """Build the application.

    ``services`` are built from ``settings`` on startup unless provided, and
    are closed on shutdown either way.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.settings = settings
        app.state.services = services or build_services(settings)
        purged = await run_in_threadpool(app.state.services.ledger.purge_expired)
        logger.info("Image relay ready (upload provider: %s, purged %s stale records)", settings.upload_provider, purged)
        try:
            yield
        finally:
            app.state.services.close()

    app = FastAPI(title="Image Relay", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RelayError, _relay_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
    app.include_router(router)
    return app


app = create_app()


def main() -> None:  # pragma: no cover - convenience entry point
    import uvicorn

    settings = get_settings()
    uvicorn.run("imagerelay.main:app", host=settings.host, port=settings.port)


__all__ = ["app", "create_app", "build_services", "RelayServices"]


if __name__ == "__main__":  # pragma: no cover - convenience entry point
    main()
