# backend/core/middleware.py
import time
import uuid
from typing import Callable, Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from config.logging import get_logger, log_api_request, log_api_response
from config.settings import get_settings

logger = get_logger(__name__)
settings = get_settings()

REQUEST_ID_HEADER = "X-Request-Id"
UNLOGGED_PATHS = ("/health", "/status", "/favicon.ico")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Request-Id or mint one, and echo it back."""

    async def dispatch(self, request: Request, call_next: Callable):
        request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """One api-log entry per request plus one per response, with timing."""

    def __init__(self, app, skip_paths: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.skip_paths = tuple(skip_paths or UNLOGGED_PATHS)

    def _skipped(self, path: str) -> bool:
        return path.startswith(self.skip_paths)

    async def dispatch(self, request: Request, call_next: Callable):
        if self._skipped(request.url.path):
            return await call_next(request)

        request_id = getattr(request.state, "request_id", None) or "-"
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"{request.method} {request.url.path} [{request_id}] raised after "
                f"{time.perf_counter() - started:.3f}s: {e}"
            )
            raise
        duration = time.perf_counter() - started

        # Authentication stores user_id on request.state, so log after the handler ran
        log_api_request(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            user_id=getattr(request.state, "user_id", None),
        )
        log_api_response(request_id=request_id, status_code=response.status_code, duration=duration)

        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response


def register_middleware(app: FastAPI):
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER, "Content-Disposition"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Starlette runs the last-added middleware first, so request IDs exist before logging
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    logger.info("Middleware registered")
