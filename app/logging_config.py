"""
Structured logging configuration using structlog.

Both the API process and the dispatch worker call configure_logging()
once at startup; every log line is a JSON object. Context bound with
structlog.contextvars (request id, tenant) is merged into each line.
"""
import logging
import sys

import structlog

from app.config import settings


def _resolve_level(level: str | None) -> int:
    resolved = logging.getLevelName((level or settings.LOG_LEVEL).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: str | None = None):
    """Configure stdlib logging and structlog for JSON output."""
    log_level = _resolve_level(level)

    # Third-party libraries (SQLAlchemy, httpx, uvicorn) log through stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger()
