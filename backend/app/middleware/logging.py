from __future__ import annotations

import logging
import re
import time
from collections.abc import Awaitable, Callable
from uuid import uuid4

from fastapi import Request
from fastapi.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..metrics import REQUEST_COUNT, REQUEST_ERRORS, REQUEST_LATENCY

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_PATTERN = re.compile(r"[A-Za-z0-9._:-]{1,128}")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag every request with an id, log its outcome as JSON and feed Prometheus."""

    def __init__(self, app: ASGIApp, *, logger_name: str = "lifetrack.request") -> None:
        super().__init__(app)
        self._logger = logging.getLogger(logger_name)
        if self._logger.level == logging.NOTSET:
            self._logger.setLevel(logging.INFO)

    async def dispatch(  # type: ignore[override]
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = _request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            self._finish(request, 500, started, failed=True)
            raise

        self._finish(request, response.status_code, started)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    def _finish(
        self, request: Request, status: int, started: float, *, failed: bool = False
    ) -> None:
        elapsed = time.perf_counter() - started
        path = _route_template(request)
        _observe(request.method, path, status, elapsed)

        context = {
            "request_id": request.state.request_id,
            "path": path,
            "method": request.method,
            "status": status,
            "duration_ms": round(elapsed * 1000, 3),
            "user": getattr(request.state, "telemetry_user", None),
        }
        if failed:
            self._logger.error("request error", extra=context, exc_info=True)
        elif status >= 500:
            self._logger.warning("request complete", extra=context)
        else:
            self._logger.info("request complete", extra=context)


def _request_id(incoming: str | None) -> str:
    if incoming and _REQUEST_ID_PATTERN.fullmatch(incoming):
        return incoming
    return uuid4().hex


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return str(getattr(route, "path", None) or request.url.path)


def _observe(method: str, path: str, status: int, seconds: float) -> None:
    code = str(status)
    REQUEST_COUNT.labels(method=method, path=path, status=code).inc()
    REQUEST_LATENCY.labels(method=method, path=path).observe(seconds)
    if status >= 500:
        REQUEST_ERRORS.labels(method=method, path=path, status=code).inc()
