"""
FastAPI middleware for request tracing and logging.

This module provides middleware that:
- Generates unique request IDs for tracing
- Binds the feed session id (when present in the path) for correlation
- Logs request/response information with timing
"""

import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging import bind_context, clear_context, get_logger


logger = get_logger(__name__)

_SESSION_PATH = re.compile(r"^/api/feed/(sess_[0-9a-f]+)")


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds request tracing and logging.

    - Generates unique request_id for each request (or reuses X-Request-ID)
    - Binds request_id, method, path and session_id to every log line
    - Adds X-Request-ID header to the response

    Usage:
        app = FastAPI()
        app.add_middleware(RequestTracingMiddleware)
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])

        bind_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        match = _SESSION_PATH.match(request.url.path)
        if match:
            bind_context(session_id=match.group(1))

        start_time = time.perf_counter()
        logger.debug("Request started")

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "Request completed",
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "Request failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round(duration_ms, 2),
            )
            raise

        finally:
            clear_context()
