"""
structlog setup shared by the FastAPI app and the Lambda entry points.

Both surfaces log through stdlib logging so that library records (botocore,
uvicorn) and structlog events end up in the same stream. LOG_FORMAT=json
writes one JSON object per line for CloudWatch; LOG_FORMAT=dev renders
colored console output for local runs.
"""
from __future__ import annotations

import logging
from typing import Any, List

import structlog

from .settings import Settings

# Chatty AWS SDK loggers are capped at this level unless LOG_LEVEL is stricter.
_SDK_LOGGERS = ("boto3", "botocore", "urllib3")
_SDK_LEVEL = logging.WARNING


def _timestamp_and_context() -> List[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _renderer(log_format: str) -> Any:
    if log_format == "dev":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def _final_processors(log_format: str) -> List[Any]:
    # ConsoleRenderer prints tracebacks itself; JSON needs them flattened to a string first.
    tail: List[Any] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if log_format != "dev":
        tail.insert(0, structlog.processors.format_exc_info)
    return [*tail, _renderer(log_format)]


# PUBLIC_INTERFACE
def setup_logging(settings: Settings) -> None:
    """
    Configure structlog and the root logger from LOG_LEVEL and LOG_FORMAT.

    Safe to call more than once: the root handler is replaced, not added.
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    pre_chain = _timestamp_and_context()
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=_final_processors(settings.log_format),
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name in _SDK_LOGGERS:
        logging.getLogger(name).setLevel(max(level, _SDK_LEVEL))
