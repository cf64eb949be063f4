"""
Core module for cross-cutting concerns.

This module provides:
- Structured logging configuration
- Request tracing middleware
- Common utilities
"""

from core.logging import configure_logging, get_logger, bind_context, LoggerMixin
from core.utils import utc_now, parse_timestamp, stable_hash, safe_get

__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "LoggerMixin",
    "utc_now",
    "parse_timestamp",
    "stable_hash",
    "safe_get",
]
