from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from typing import Any, AsyncGenerator, Dict, List, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .container import Container, build_container
from .errors import InvalidJSONError, RouteNotFoundError, TodoError
from .logging_config import setup_logging
from .middleware import CORSHeadersMiddleware, RequestLoggingMiddleware
from .routers import identity as identity_router
from .routers import todos as todos_router
from .scheduler import InMemoryScheduler
from .settings import get_settings
from .utils import cors_headers, utc_now
from .worker import drain_local_schedule

log = structlog.get_logger()

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {"name": "identity", "description": "The authenticated caller."},
    {
        "name": "todos",
        "description": "CRUD operations for Todo items with cursor pagination and deferred aging.",
    },
]


async def _run_local_aging(container: Container, scheduler: InMemoryScheduler) -> None:
    """Deliver due in-memory aging tasks to the worker, the way the queue would."""
    interval = container.settings.aging_poll_interval_seconds
    retry_delay = timedelta(seconds=interval)
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(
                drain_local_schedule, scheduler, container.worker, utc_now(), retry_delay
            )
        except Exception:
            log.exception("local_aging_drain_failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the local aging loop when scheduling in-process; close the store on shutdown."""
    container: Container = app.state.container
    task: Optional[asyncio.Task] = None
    if isinstance(container.scheduler, InMemoryScheduler):
        task = asyncio.create_task(_run_local_aging(container, container.scheduler))
        log.info("local_aging_loop_started", interval=container.settings.aging_poll_interval_seconds)
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        container.close()


def _jsonable_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop non-serializable error context (exceptions, raw inputs) from validation errors."""
    return [{"type": e.get("type"), "loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors]


def _error_response(exc: TodoError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"message": exc.public_message})


# PUBLIC_INTERFACE
def create_app(container: Optional[Container] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        container: Prebuilt components. When omitted, they are built from
            environment settings and logging is configured.
    """
    if container is None:
        settings = get_settings()
        setup_logging(settings)
        container = build_container(settings)

    app = FastAPI(
        title="Serverless Todo",
        description="Todo resource API with cursor pagination and deferred aging.",
        version="0.1.0",
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(CORSHeadersMiddleware, allow_origins=container.settings.cors_allow_origins)
    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(TodoError)
    async def todo_error_handler(request: Request, exc: TodoError) -> JSONResponse:
        """
        Map domain errors to their status code with a {"message": ...} body.
        Server-side faults are logged and answered with a generic message.
        """
        if exc.status_code >= 500:
            log.error("request_failed", error=exc.message, error_type=type(exc).__name__)
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """
        Request bodies are parsed by FastAPI; report malformed JSON as 400 "invalid JSON"
        and any other shape problem as a 400 with the first error.

        Response format:
            {"message": "invalid JSON"}
            {"message": "request body must be a JSON object", "detail": [...]}
        """
        errors = exc.errors()
        if any("json" in str(err.get("type", "")) for err in errors):
            return _error_response(InvalidJSONError())
        first = errors[0] if errors else {}
        loc = first.get("loc") or ()
        message = "request body must be a JSON object" if loc[:1] == ("body",) else "invalid request"
        return JSONResponse(
            status_code=400,
            content={"message": message, "detail": _jsonable_errors(errors)},
        )

    @app.exception_handler(Exception)
    async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Last-resort handler for errors outside the domain taxonomy.

        Starlette runs it outside the user middleware stack, so the CORS
        headers are attached here.
        """
        log.exception("request_failed_unexpectedly", method=request.method, path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={"message": TodoError.default_message},
            headers=cors_headers(container.settings.cors_allow_origins, request.headers.get("origin")),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """
        Unknown paths and unsupported methods are both "route not found".
        """
        if exc.status_code in (404, 405):
            return _error_response(RouteNotFoundError())
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    # PUBLIC_INTERFACE
    @app.get("/", summary="Health Check", tags=["health"])
    def health_check():
        """
        Health check endpoint.

        Returns:
            A JSON object indicating service health.
        """
        return {"message": "Healthy", "backend": container.settings.persistence_backend}

    app.include_router(todos_router.router)
    app.include_router(identity_router.router)

    @app.options("/{full_path:path}", include_in_schema=False)
    def preflight(full_path: str):
        """CORS preflight for any path."""
        return {"ok": True}

    return app


app = create_app()
