"""
FastAPI application entry point for the ArtHub REST backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.dependencies import init_dependencies, shutdown_dependencies
from backend.routes import router
from shared.config import get_settings
from shared.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    SocialError,
    StorageError,
    UnsupportedOperationError,
    ValidationError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (ValidationError, 400),
    (AuthenticationError, 401),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (UnsupportedOperationError, 501),
    (StorageError, 500),
)


def status_for(error: SocialError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


async def social_error_handler(request: Request, exc: SocialError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status, content={"detail": exc.message})


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_dependencies()
    yield
    await shutdown_dependencies()


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )
    app = FastAPI(title="ArtHub Backend (FastAPI)", version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(SocialError, social_error_handler)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
