"""Structured logging configuration."""

from __future__ import annotations

import logging
import sys
from typing import Optional

import structlog
from structlog.types import Processor


def setup_logging(level: str = "WARNING", fmt: str = "console") -> structlog.BoundLogger:
    """
    Configure stdlib logging and structlog for ruckfusion.

    Log output goes to stderr so that CLI output on stdout stays clean.

    Args:
        level: Log level name ("DEBUG", "INFO", ...)
        fmt: "json" for machine-readable output, anything else for console

    Returns:
        Root ruckfusion logger
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.WARNING),
        force=True,
    )

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger("ruckfusion")


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
