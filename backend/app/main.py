from __future__ import annotations

import logging
import math
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .api.journals import router as journals_router
from .core.config import Settings, load_settings
from .core.errors import AuthError, JournalError, RateLimitError, error_body
from .core.logging import configure_logging
from .core.security import TokenVerifier
from .middleware import RequestLoggingMiddleware
from .schemas.health import HealthResponse, ProbeResult, ReadinessResponse
from .services.backends import Backends, build_backends
from .services.journal import JournalService
from .services.ratelimit import RateLimiter

logger = logging.getLogger(__name__)


def _telemetry_from(request: Request):
    backends: Backends | None = getattr(request.app.state, "backends", None)
    return backends.telemetry if backends is not None else None


def _record_server_error(request: Request, exc: BaseException) -> None:
    properties = {
        "path": request.url.path,
        "method": request.method,
        "request_id": getattr(request.state, "request_id", None),
    }
    telemetry = _telemetry_from(request)
    if telemetry is not None:
        telemetry.track_exception(exc, properties)
    else:
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)


def _register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    expose_detail = not settings.is_production

    @app.exception_handler(JournalError)
    async def handle_journal_error(request: Request, exc: JournalError) -> JSONResponse:
        if exc.is_server_error:
            _record_server_error(request, exc)
        headers: dict[str, str] | None = None
        if isinstance(exc, AuthError):
            headers = {"WWW-Authenticate": "Bearer"}
        elif isinstance(exc, RateLimitError):
            headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after)))}
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc, expose_detail=expose_detail),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "ValidationError",
                "message": "invalid request",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        _record_server_error(request, exc)
        content = {"error": "InternalError", "message": "internal error"}
        if expose_detail:
            content["message"] = str(exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


def create_app(settings: Settings | None = None, *, backends: Backends | None = None) -> FastAPI:
    """Build the API from an explicit configuration.

    ``backends`` may be supplied to bypass live/mock resolution; the caller
    then owns their lifecycle.
    """

    settings = settings or load_settings()
    token_verifier = TokenVerifier.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings)
        active = backends or await build_backends(settings)

        app.state.backends = active
        app.state.journal_service = JournalService(
            active.container,
            active.classifier,
            active.blob_store,
            active.telemetry,
            max_attachment_bytes=settings.max_attachment_bytes,
        )

        logger.info(
            "Starting LifeTrack journal API version=%s environment=%s services=%s",
            settings.version,
            settings.environment,
            active.report.as_dict(),
        )
        if not active.report.fully_live:
            logger.warning(
                "Mock backends in use: %s",
                ", ".join(
                    name for name, status in active.report.services.items() if not status.live
                ),
            )
        try:
            yield
        finally:
            if backends is None:
                await active.aclose()

    app = FastAPI(title="LifeTrack Journal", version=settings.version, lifespan=lifespan)
    app.state.settings = settings
    app.state.token_verifier = token_verifier
    app.state.rate_limiter = RateLimiter()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    _register_exception_handlers(app, settings)

    app.include_router(journals_router)

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        active: Backends = request.app.state.backends
        return HealthResponse(
            status="up",
            timestamp=datetime.now(UTC),
            version=settings.version,
            services=active.report.as_dict(),
        )

    @app.get("/readyz", response_model=ReadinessResponse)
    async def readyz(request: Request) -> ReadinessResponse:
        active: Backends = request.app.state.backends

        db_ok, db_detail = True, "ok"
        try:
            await active.container.healthcheck()
        except Exception as exc:
            db_ok, db_detail = False, str(exc)

        blobs_ok, blobs_detail = True, "ok"
        try:
            await active.blob_store.healthcheck()
        except Exception as exc:
            blobs_ok, blobs_detail = False, str(exc)

        return ReadinessResponse(
            ready=db_ok and blobs_ok,
            database=ProbeResult(ok=db_ok, detail=db_detail),
            blobs=ProbeResult(ok=blobs_ok, detail=blobs_detail),
        )

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
