"""
Health check endpoints.

Provides endpoints for monitoring application health and status.
"""

from typing import Any, Dict

from fastapi import APIRouter, Request

from core.logging import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint.

    Returns:
        Health status with basic info
    """
    return {
        "status": "healthy",
        "service": "feed-api",
    }


@router.get("/health/detailed")
async def detailed_health_check(request: Request) -> Dict[str, Any]:
    """
    Detailed health check with dependency status.

    Checks:
    - Configuration loaded
    - Remote store reachable (one-row query on the posts collection)
    - Live feed sessions

    Returns:
        Detailed health status
    """
    settings = request.app.state.settings
    store = getattr(request.app.state, "store", None)

    store_status = "unknown"
    store_error = None
    if store is None:
        store_status = "not_configured"
    else:
        try:
            await store.list_records(settings.feed_posts_collection, limit=1)
            store_status = "connected"
        except Exception as e:
            store_status = "error"
            store_error = str(e)
            logger.warning("Store health check failed", error=store_error)

    return {
        "status": "healthy" if store_status == "connected" else "degraded",
        "service": "feed-api",
        "environment": settings.environment,
        "checks": {
            "config": "ok",
            "store": {
                "status": store_status,
                "error": store_error,
            },
            "sessions": request.app.state.sessions.get_stats(),
        },
    }


@router.get("/ready")
async def readiness_check(request: Request) -> Dict[str, str]:
    """
    Kubernetes-style readiness probe.

    Returns 200 if the service is ready to accept traffic.
    """
    if getattr(request.app.state, "store", None) is None:
        return {"status": "not_ready", "reason": "store_not_configured"}

    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """
    Kubernetes-style liveness probe.

    Returns 200 if the service is alive.
    """
    return {"status": "alive"}
