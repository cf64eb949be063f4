"""
Structured logging configuration using structlog.

Every feed component logs through this module so that source failures,
rollbacks and realtime events can be correlated per viewer session.
Development gets colored console output, production gets JSON lines.

Usage:
    from core.logging import configure_logging, get_logger

    # Configure once at startup
    configure_logging(json_logs=False)  # Development
    configure_logging(json_logs=True)   # Production

    # Get a logger
    logger = get_logger(__name__)

    # Log with context
    logger.info("Page served", session_id="sess_1", items=18)
    logger.warning("Source fetch failed", source="promoted", error=str(e))
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import Processor


# Third-party loggers that are chatty at INFO
_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "hpack",
    "websockets",
    "realtime",
    "uvicorn.access",
)


def configure_logging(
    json_logs: bool = False,
    log_level: str = "INFO",
    include_timestamp: bool = True,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        json_logs: If True, output JSON format (for production).
                   If False, output colored console format (for development).
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        include_timestamp: Whether to include timestamp in logs
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if include_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        ))

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__). If None, returns root logger.

    Returns:
        A structlog BoundLogger instance
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Bind context variables to all subsequent logs in the current context.

    Used to tag every log line of a feed operation with its session,
    e.g. ``bind_context(session_id="sess_1", viewer_id="u1")``.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()


class LoggerMixin:
    """
    Mixin class that provides a logger property named after the class.

    Usage:
        class FeedCache(LoggerMixin):
            def invalidate_all(self):
                self.logger.info("Cache invalidated")
    """

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return get_logger(self.__class__.__name__)
