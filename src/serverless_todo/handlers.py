"""
AWS Lambda entry points.

- api_handler: API Gateway proxy integration for the todo routes
- aging_handler: SQS event source for the aging queue
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, Mapping

import structlog

from .container import Container, build_container
from .logging_config import setup_logging
from .router import RouteRequest
from .settings import get_settings


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_container() -> Container:
    """Build the container on the first invocation and reuse it for the life of the execution environment."""
    settings = get_settings()
    setup_logging(settings)
    return build_container(settings)


def _bind_invocation(context: Any) -> None:
    structlog.contextvars.clear_contextvars()
    request_id = getattr(context, "aws_request_id", None)
    if request_id:
        structlog.contextvars.bind_contextvars(request_id=request_id)


# PUBLIC_INTERFACE
def api_handler(event: Mapping[str, Any], context: Any) -> Dict[str, Any]:
    container = get_container()
    _bind_invocation(context)
    request = RouteRequest.from_event(event)
    if request.subject:
        structlog.contextvars.bind_contextvars(subject=request.subject)
    return container.router.dispatch(request)


# PUBLIC_INTERFACE
def aging_handler(event: Mapping[str, Any], context: Any) -> Dict[str, Any]:
    container = get_container()
    _bind_invocation(context)
    return container.worker.handle_batch(event)
