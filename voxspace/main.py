"""Application entry point for the companion HTTP API."""
from __future__ import annotations

import logging
import os
from typing import Iterable

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .clients import RemoteStoreError
from .config import get_settings
from .database import init_db
from .routers import backup_router, bag_router, realtime_router, stories_router
from .services import (
    AuthMismatch,
    BackupFormatError,
    ContentValidationError,
    InvalidPinFormat,
    MirrorError,
    PinNotConfigured,
    QuotaExceeded,
    StoryPermissionError,
    VaultItemNotFound,
    VaultLockedError,
)
from .services.story_service import StoryStorageUnavailable

logger = logging.getLogger(__name__)

settings = get_settings()
APP_NAME = settings.app_name
API_VERSION = settings.api_version

app = FastAPI(title=APP_NAME, version=API_VERSION)

cors_origins = os.getenv("CORS_ORIGINS")
if cors_origins:
    origins: Iterable[str] = [origin.strip() for origin in cors_origins.split(",") if origin.strip()]
else:
    origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(stories_router)
app.include_router(bag_router)
app.include_router(backup_router)
app.include_router(realtime_router)

_ERROR_STATUS: tuple[tuple[type[Exception], int], ...] = (
    (ContentValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (BackupFormatError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidPinFormat, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (VaultLockedError, status.HTTP_423_LOCKED),
    (AuthMismatch, status.HTTP_403_FORBIDDEN),
    (StoryPermissionError, status.HTTP_403_FORBIDDEN),
    (QuotaExceeded, status.HTTP_409_CONFLICT),
    (PinNotConfigured, status.HTTP_428_PRECONDITION_REQUIRED),
    (VaultItemNotFound, status.HTTP_404_NOT_FOUND),
    (StoryStorageUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (MirrorError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (RemoteStoreError, status.HTTP_502_BAD_GATEWAY),
)


def _register_error(error_type: type[Exception], status_code: int) -> None:
    async def _handler(request: Request, exc: Exception) -> JSONResponse:
        if status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    app.add_exception_handler(error_type, _handler)


for _error_type, _status_code in _ERROR_STATUS:
    _register_error(_error_type, _status_code)


@app.on_event("startup")
async def _startup() -> None:
    """Ensure the remote-store schema exists before serving."""

    try:
        init_db()
    except Exception:  # pragma: no cover - best effort logging
        logger.exception("Database initialisation failed")
        raise


@app.get("/api", tags=["system"])
def api_info() -> dict[str, str]:
    return {"service": APP_NAME, "version": API_VERSION}


__all__ = ["app"]
