# courier_dispatch/transport/middleware.py
import time
import uuid
from typing import Callable, Iterable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from courier_dispatch.infra.logging_config import get_logger, LogContext

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse the terminal's X-Request-ID or mint one; echo it on the response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One record per request with method, path, status and duration."""

    def __init__(self, app: ASGIApp, enabled: bool = True, skip_paths: Iterable[str] = ("/health",)):
        super().__init__(app)
        self.enabled = enabled
        self.skip_paths = frozenset(skip_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled or request.url.path in self.skip_paths:
            return await call_next(request)

        log_ctx = LogContext(logger, request_id=_request_id(request))
        route = f"{request.method} {request.url.path}"
        extra = {"method": request.method, "path": request.url.path}
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            extra["error_type"] = exc.__class__.__name__
            extra["duration_ms"] = (time.perf_counter() - started) * 1000
            log_ctx.error(f"{route} raised {exc.__class__.__name__}", extra=extra, exc_info=True)
            raise

        extra["status_code"] = response.status_code
        extra["duration_ms"] = (time.perf_counter() - started) * 1000
        log_ctx.info(f"{route} -> {response.status_code} ({extra['duration_ms']:.1f}ms)", extra=extra)
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Last-resort 500: never leaks the exception text to the terminal."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = _request_id(request)
            LogContext(logger, request_id=request_id).error(
                f"Unhandled exception: {exc.__class__.__name__}: {exc}",
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "request_id": request_id},
            )
