"""HTTP middleware for the FastAPI surface."""
from __future__ import annotations

import uuid
from typing import Sequence

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from .utils import cors_headers


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Generate a request_id per request and bind it to the structlog context."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        log = structlog.get_logger()
        log.info("request_started")

        response = await call_next(request)

        log.info("request_completed", status_code=response.status_code)

        response.headers["X-Request-ID"] = request_id
        return response


class CORSHeadersMiddleware(BaseHTTPMiddleware):
    """Attach CORS headers to every response, including errors."""

    def __init__(self, app: ASGIApp, allow_origins: Sequence[str] = ("*",)) -> None:
        super().__init__(app)
        self._allow_origins = list(allow_origins)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers.update(cors_headers(self._allow_origins, request.headers.get("origin")))
        return response
