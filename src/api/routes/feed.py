"""
Feed session routes.

One feed session per client session. The client creates a session for a
viewer, then drives it:

    POST   /api/feed/sessions                   create (returns session_id)
    GET    /api/feed/{session_id}               snapshot
    POST   /api/feed/{session_id}/load          first page
    POST   /api/feed/{session_id}/more          next page
    POST   /api/feed/{session_id}/refresh       reload page one
    POST   /api/feed/{session_id}/retry         retry after an error
    POST   /api/feed/{session_id}/interactions  view / like / share / comment / skip
    POST   /api/feed/{session_id}/mutations     optimistic like / share / pass
    POST   /api/feed/{session_id}/preferences   persist preferences and refresh
    GET    /api/feed/{session_id}/notifications drain pending notifications
    DELETE /api/feed/{session_id}               close the session

Domain errors are translated to HTTP status codes by the exception
handlers registered in api.app.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from core.logging import bind_context, get_logger
from feed.controller import FeedController
from feed.errors import PageLoadError
from feed.factory import create_feed_controller
from feed.models import ContentKind, InteractionEvent, InteractionKind, MutationKind
from services.session_manager import FeedSessionManager


logger = get_logger(__name__)

router = APIRouter(prefix="/api/feed", tags=["Feed"])


# =============================================================================
# Request Models
# =============================================================================

class CreateSessionRequest(BaseModel):
    """Request to open a feed session."""
    viewer_id: str = Field(..., min_length=1, description="ID of the viewing user")
    autoload: bool = Field(default=False, description="Load the first page immediately")


class InteractionRequest(BaseModel):
    """A viewer interaction with a feed item."""
    item_id: str = Field(..., min_length=1)
    kind: InteractionKind
    duration_ms: Optional[int] = Field(default=None, ge=0)


class MutationRequest(BaseModel):
    """An optimistic action on a feed item."""
    kind: MutationKind
    item_id: str = Field(..., min_length=1)
    super_like: bool = Field(default=False, description="Super like (profiles only)")
    source_kind: Optional[ContentKind] = Field(
        default=None,
        description="Disambiguates ids shared across sources",
    )


class PreferencesRequest(BaseModel):
    """Feed preferences of the viewer."""
    preferred_content_types: Optional[list] = None
    content_interests: Optional[list] = None
    diversity_preference: Optional[float] = Field(default=None, ge=0, le=1)
    freshness_preference: Optional[float] = Field(default=None, ge=0, le=1)


# =============================================================================
# Helpers
# =============================================================================

def get_sessions(request: Request) -> FeedSessionManager:
    return request.app.state.sessions


def get_controller(request: Request, session_id: str) -> FeedController:
    """Resolve a live session or fail with 404."""
    controller = get_sessions(request).get(session_id)
    if controller is None:
        raise HTTPException(status_code=404, detail=f"Unknown feed session: {session_id}")
    bind_context(viewer_id=controller.viewer_id)
    return controller


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/sessions", summary="Open a feed session", status_code=201)
async def create_session(body: CreateSessionRequest, request: Request) -> Dict[str, Any]:
    settings = request.app.state.settings
    controller = await create_feed_controller(
        body.viewer_id,
        request.app.state.store,
        settings,
        clock=request.app.state.clock,
    )
    await controller.start()
    session_id = get_sessions(request).add(controller)
    bind_context(session_id=session_id)
    if body.autoload:
        try:
            await controller.load()
        except PageLoadError as e:
            # Session stays open in the error state until the client retries
            logger.warning("Autoload failed", session_id=session_id, error=str(e))
    return {"session_id": session_id, "viewer_id": body.viewer_id, **controller.snapshot()}


@router.get("/{session_id}", summary="Current feed snapshot")
async def get_feed(session_id: str, request: Request) -> Dict[str, Any]:
    return get_controller(request, session_id).snapshot()


@router.post("/{session_id}/load", summary="Load the first page")
async def load_feed(session_id: str, request: Request) -> Dict[str, Any]:
    controller = get_controller(request, session_id)
    await controller.load()
    return controller.snapshot()


@router.post("/{session_id}/more", summary="Load the next page")
async def load_more(session_id: str, request: Request) -> Dict[str, Any]:
    controller = get_controller(request, session_id)
    added = await controller.load_more()
    return {"added": len(added), **controller.snapshot()}


@router.post("/{session_id}/refresh", summary="Reload the feed from scratch")
async def refresh_feed(session_id: str, request: Request) -> Dict[str, Any]:
    controller = get_controller(request, session_id)
    await controller.refresh()
    return controller.snapshot()


@router.post("/{session_id}/retry", summary="Retry after a failed load")
async def retry_feed(session_id: str, request: Request) -> Dict[str, Any]:
    controller = get_controller(request, session_id)
    await controller.retry()
    return controller.snapshot()


@router.post("/{session_id}/interactions", summary="Record a viewer interaction")
async def record_interaction(
    session_id: str,
    body: InteractionRequest,
    request: Request,
) -> Dict[str, Any]:
    controller = get_controller(request, session_id)
    controller.record_interaction(
        InteractionEvent(item_id=body.item_id, kind=body.kind, duration_ms=body.duration_ms)
    )
    return {
        "accepted": True,
        "behavior": controller.tracker.get_profile().model_dump(mode="json"),
        "refresh_interval_ms": controller.tracker.get_recommended_refresh_interval_ms(),
    }


@router.post("/{session_id}/mutations", summary="Apply an optimistic mutation")
async def apply_mutation(
    session_id: str,
    body: MutationRequest,
    request: Request,
) -> Dict[str, Any]:
    controller = get_controller(request, session_id)
    mutation = controller.apply_mutation(
        body.kind,
        body.item_id,
        super_like=body.super_like,
        source_kind=body.source_kind,
    )
    return {
        "applied": mutation is not None,
        "mutation": mutation.model_dump(mode="json") if mutation else None,
        "swipes_remaining": controller.mutations.quota.remaining,
    }


@router.post("/{session_id}/preferences", summary="Update feed preferences")
async def update_preferences(
    session_id: str,
    body: PreferencesRequest,
    request: Request,
) -> Dict[str, Any]:
    controller = get_controller(request, session_id)
    await controller.update_preferences(body.model_dump(exclude_none=True))
    return controller.snapshot()


@router.get("/{session_id}/notifications", summary="Drain pending notifications")
async def drain_notifications(session_id: str, request: Request) -> Dict[str, Any]:
    controller = get_controller(request, session_id)
    drain = getattr(controller.notifier, "drain", None)
    notifications = drain() if drain is not None else []
    return {"notifications": [n.model_dump(mode="json") for n in notifications]}


@router.delete("/{session_id}", summary="Close a feed session")
async def close_session(session_id: str, request: Request) -> Dict[str, Any]:
    closed = await get_sessions(request).close_session(session_id)
    if not closed:
        raise HTTPException(status_code=404, detail=f"Unknown feed session: {session_id}")
    return {"closed": True, "session_id": session_id}
