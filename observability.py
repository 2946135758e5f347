"""Observability helpers: structured logging through structlog.

Call `init_observability` once at process start, before the app handles
requests.
"""
from __future__ import annotations

import logging

import structlog

from settings import Settings

__all__ = ["init_observability"]


def _setup_logging(log_format: str, log_level: str) -> None:
    """Configure structlog for structured logging (JSON or console)."""

    # Define shared processors
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    # Choose renderer based on format
    if log_format.lower() == "json":
        final_processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [final_processor],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    # Repeated app construction (tests, reloads) must not stack handlers
    if not any(getattr(h, "_prodmarket", False) for h in root_logger.handlers):
        handler = logging.StreamHandler()
        handler._prodmarket = True  # type: ignore[attr-defined]
        root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    # Silence noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def init_observability(settings: Settings) -> None:
    """Setup logging. Safe to call more than once."""

    _setup_logging(settings.log_format, settings.log_level)

    structlog.get_logger(__name__).info(
        "Observability initialized", log_format=settings.log_format, log_level=settings.log_level
    )
