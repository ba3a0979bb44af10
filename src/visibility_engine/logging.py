"""Structured logging configuration."""

import logging
import sys
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any
from uuid import UUID

import structlog

from visibility_engine.config import settings

# Libraries whose INFO output drowns out queue and authority events
NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "celery": logging.INFO,
}


def _stringify_ids(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Render UUID values as plain strings so call sites can log ids directly."""
    for key, value in event_dict.items():
        if isinstance(value, UUID):
            event_dict[key] = str(value)
    return event_dict


def setup_logging() -> None:
    """Configure structlog and route stdlib logging through it.

    Safe to call more than once: the API, the CLI and the Celery worker
    each call it at import time.
    """
    if settings.log_format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _stringify_ids,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level.upper())

    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance for a module."""
    return structlog.get_logger(name)


@contextmanager
def job_log_context(job_id: UUID, job_type: str, attempt: int) -> Generator[None, None, None]:
    """Tag every log line emitted while a job runs, handler and adapters included."""
    with structlog.contextvars.bound_contextvars(
        job_id=str(job_id), job_type=job_type, attempt=attempt
    ):
        yield
