"""Observability helpers: structured logging and CloudWatch Embedded Metrics.

Call ``init_observability`` once at process start; pass the FastAPI app to
also attach the request-id middleware.
"""
from __future__ import annotations

import logging
import os
from typing import Optional

import structlog
from aws_embedded_metrics import metric_scope

__all__ = [
    "init_observability",
    "metric_scope",  # re-export for convenience
]

_NOISY_LOGGERS = ("uvicorn.access", "uvicorn.error", "httpx", "httpcore")

_configured = False


def _setup_logging(log_format: str, log_level: str) -> None:
    """Configure structlog for JSON (deployed) or console (local) output."""

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
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
    root_logger.addHandler(logging.StreamHandler())
    root_logger.setLevel(log_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def init_observability(app: Optional["FastAPI"] = None) -> None:  # noqa: F821
    """Setup logging (once) and request correlation for ``app``."""
    global _configured

    if not _configured:
        _setup_logging(
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
        _configured = True

    if app is not None:
        from request_id_middleware import RequestIdMiddleware

        app.add_middleware(RequestIdMiddleware)

    structlog.get_logger(__name__).info("Observability initialized")
