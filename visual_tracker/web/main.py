from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from visual_tracker.infrastructure.config import get_settings
from visual_tracker.infrastructure.exceptions import (
    ConfigurationError,
    TrackerError,
    log_error_details,
)
from visual_tracker.infrastructure.logging import get_logger
from visual_tracker.web.routes import api

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Tracker API starting", extra={"operation": "startup"})
    logger.debug("Environment: %s", get_settings().get_environment_info())
    yield


async def tracker_error_handler(request: Request, exc: TrackerError) -> JSONResponse:
    """Errors that escape the routes, e.g. from opening the database."""
    details = log_error_details(exc, {"path": request.url.path})
    logger.error("Unhandled tracker error", extra=details)
    code = (
        status.HTTP_503_SERVICE_UNAVAILABLE
        if isinstance(exc, ConfigurationError)
        else status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    return JSONResponse(status_code=code, content={"detail": exc.user_message})


def create_application() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title=settings.app.title,
        version=settings.app.version,
        debug=settings.app.debug,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )
    app.add_exception_handler(TrackerError, tracker_error_handler)
    app.include_router(api.router)
    return app


app = create_application()
