"""Structured logging configuration using structlog."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

from alexandria.core.config import Settings, settings as default_settings

# Chatty third-party loggers kept at WARNING unless debugging
_NOISY_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "PIL", "py7zr")


def setup_logging(config: Settings | None = None) -> None:
    """Configure structlog and the stdlib root logger for the process.

    Debug mode renders colored console lines; otherwise every event is a
    JSON object on stdout.
    """
    config = config or default_settings
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if config.debug:
        renderer: list[Any] = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderer = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    for name in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
        logging.getLogger(name).setLevel(log_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(log_level if config.debug else logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Optional logger name. If not provided, uses the caller's module name.

    Returns:
        A bound structlog logger instance.
    """
    return structlog.get_logger(name)


@contextmanager
def job_log_context(**context: Any) -> Iterator[None]:
    """Attach job identifiers to every event logged inside the block.

    Context is task-local, so concurrent workers never see each other's ids.
    """
    with structlog.contextvars.bound_contextvars(**context):
        yield
