"""Structured logging setup."""

import logging
import sys
from typing import TextIO

import structlog
from structlog.types import Processor

from .config import AppSettings


def setup_logging(settings: AppSettings, stream: TextIO | None = None) -> None:
    """Configure structlog and route stdlib logging through the same level.

    Args:
        settings: Application settings with log level and format.
        stream: Where log lines go; stdout unless given.
    """
    level = getattr(logging, settings.log_level, logging.INFO)
    stream = stream or sys.stdout

    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=level,
        force=True,
    )

    renderer: Processor
    if settings.log_format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )
