"""Structured logging configuration using structlog."""

import logging
import sys
from typing import Any, Optional

import structlog

# Client libraries that log every HTTP request at INFO/DEBUG.
NOISY_LOGGERS = ("boto3", "botocore", "urllib3", "s3transfer", "elastic_transport")

RENDERERS = ("json", "console")


def _processors(log_format: str) -> list[Any]:
    if log_format not in RENDERERS:
        raise ValueError(f"Unknown log format: {log_format}")

    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    correlation_id: Optional[str] = None,
) -> structlog.BoundLogger:
    """Configure structured logging for a restore run.

    Log lines go to stderr so command results printed on stdout stay
    machine-readable. A correlation ID, when given, is bound to the context
    and carried by every logger created afterwards.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
        correlation_id: Optional correlation ID for this run

    Returns:
        Configured logger instance

    Raises:
        ValueError: If log_format is unknown
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    processors = _processors(log_format)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    if correlation_id:
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

    return structlog.get_logger()


def quiet_third_party_loggers(level: int = logging.WARNING) -> None:
    """Raise the level of chatty client libraries.

    Args:
        level: Minimum level to keep for third-party loggers
    """
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a logger, named after the component when a name is given."""
    return structlog.get_logger(name) if name else structlog.get_logger()
