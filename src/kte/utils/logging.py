"""Structured logging utilities for KTE."""

import logging
import sys
import time
from typing import Any

import structlog

# Third-party loggers that are chatty at DEBUG and carry no test-env context.
_NOISY_LOGGERS = ("urllib3", "kubernetes.client.rest")


def setup_logging(level: str = "INFO", format: str = "console", output: str = "stderr") -> None:
    """Configure structured logging for KTE.

    Test runners capture stderr per test, so console output on stderr is the
    default; CI jobs usually switch to ``format="json"``.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format (json or console)
        output: Output destination (stdout or stderr)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    stream = sys.stdout if output == "stdout" else sys.stderr

    logging.basicConfig(format="%(message)s", stream=stream, level=log_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if format == "json":
        processors = [
            *shared_processors,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)


def log_operation(
    logger: structlog.BoundLogger,
    operation: str,
    started: float | None = None,
    **kwargs: Any,
) -> None:
    """Log the completion of a lifecycle operation as ``<operation>_completed``.

    Args:
        logger: Logger instance
        operation: Operation name (create_cluster, install_addons, ...)
        started: ``time.monotonic()`` reading taken when the operation began;
            adds ``duration_seconds`` when given
        **kwargs: Additional context fields
    """
    if started is not None:
        kwargs["duration_seconds"] = round(time.monotonic() - started, 1)
    logger.info(f"{operation}_completed", **kwargs)


def log_error(
    logger: structlog.BoundLogger,
    event: str,
    error: BaseException,
    **kwargs: Any,
) -> None:
    """Log a caught exception as a structured error event.

    Used right before an error is re-raised as a KTE error or recorded as a
    failed step, so every failure leaves one event with the same fields.

    Args:
        logger: Logger instance
        event: Event name (e.g. teardown_step_failed)
        error: The caught exception
        **kwargs: Additional context fields (cluster_name, namespace, ...)
    """
    logger.error(event, error_type=type(error).__name__, error=str(error), **kwargs)
