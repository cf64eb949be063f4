"""
Pydantic models for the feed engine.

Models cover:
- Feed items (posts, promoted content, discovery profiles) as a tagged union
- Derived content scores
- Viewer behavior profile
- Pages, interaction events and pending optimistic mutations
- Change events delivered by realtime subscriptions
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Union

from pydantic import BaseModel, Field

from core.utils import utc_now


# =============================================================================
# Enums
# =============================================================================

class ContentKind(str, Enum):
    """Backing source of a feed item."""
    POST = "post"
    PROMOTED = "promoted"
    PROFILE = "profile"


class EngagementPattern(str, Enum):
    """Viewer engagement classification within the rolling window."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class InteractionKind(str, Enum):
    VIEW = "view"
    LIKE = "like"
    SHARE = "share"
    COMMENT = "comment"
    SKIP = "skip"


class MutationKind(str, Enum):
    """Optimistic user actions."""
    LIKE = "like"
    SHARE = "share"
    PASS = "pass"


class FeedStatus(str, Enum):
    """FeedController state machine."""
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    LOADING_MORE = "loading_more"
    REFRESHING = "refreshing"
    ERROR = "error"


class NotificationKind(str, Enum):
    ERROR = "error"
    INFO = "info"
    NEW_CONTENT = "new_content"


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# =============================================================================
# Feed Items
# =============================================================================

def media_family(media_type: Optional[str]) -> Optional[str]:
    """Reduce a MIME type or short media tag to its family ('image/png' -> 'image')."""
    if not media_type:
        return None
    return media_type.split("/", 1)[0].strip().lower() or None


class BaseFeedItem(BaseModel):
    """Fields shared by every feed item."""

    id: str
    created_at: datetime
    owner_id: str = ""

    view_count: int = Field(default=0, ge=0)
    like_count: int = Field(default=0, ge=0)
    share_count: int = Field(default=0, ge=0)
    comment_count: int = Field(default=0, ge=0)
    is_promoted: bool = False

    # Local flags set by optimistic mutations
    liked: bool = False
    passed: bool = False

    @property
    def feed_key(self) -> str:
        """Identity of the item across all sources."""
        return f"{self.source_kind.value}:{self.id}"

    @property
    def content_kind(self) -> str:
        return "text"


class Post(BaseFeedItem):
    """A social post from the primary feed."""

    source_kind: Literal[ContentKind.POST] = ContentKind.POST
    caption: str = ""
    author_name: str = ""
    media_urls: List[str] = Field(default_factory=list)
    media_types: List[str] = Field(default_factory=list)

    @property
    def content_kind(self) -> str:
        return media_family(self.media_types[0] if self.media_types else None) or "text"


class PromotedContent(BaseFeedItem):
    """Promotable/sponsored content injected between posts."""

    source_kind: Literal[ContentKind.PROMOTED] = ContentKind.PROMOTED
    is_promoted: bool = True
    title: str = ""
    description: str = ""
    file_url: str = ""
    content_type: str = ""
    category: Optional[str] = None
    promotion_priority: float = 0.0

    @property
    def content_kind(self) -> str:
        return media_family(self.content_type) or "image"


class DiscoveryProfile(BaseFeedItem):
    """A swipe candidate profile."""

    source_kind: Literal[ContentKind.PROFILE] = ContentKind.PROFILE
    display_name: str = ""
    age: Optional[int] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    profile_image_url: Optional[str] = None
    interests: List[str] = Field(default_factory=list)
    photo_verified: bool = False

    @property
    def content_kind(self) -> str:
        return "profile"


FeedItem = Annotated[
    Union[Post, PromotedContent, DiscoveryProfile],
    Field(discriminator="source_kind"),
]


# =============================================================================
# Scoring & Behavior
# =============================================================================

class ContentScore(BaseModel):
    """Derived multi-factor score. Recomputed on every pass, never stored."""
    item_id: str
    engagement_score: float
    freshness_score: float
    diversity_score: float
    personalized_score: float
    final_score: float


class UserBehaviorProfile(BaseModel):
    """Rolling profile of the viewer's engagement and scroll cadence."""
    avg_scroll_interval_ms: float = 1000.0
    engagement_pattern: EngagementPattern = EngagementPattern.MEDIUM
    preferred_content_kinds: Set[str] = Field(default_factory=set)
    last_active_at: datetime = Field(default_factory=utc_now)


class InteractionEvent(BaseModel):
    """A single viewer interaction. Ephemeral, feeds the BehaviorTracker."""
    item_id: str
    kind: InteractionKind
    duration_ms: Optional[int] = Field(default=None, ge=0)
    occurred_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Pages & Mutations
# =============================================================================

class Page(BaseModel):
    """One fetched page of a single source (or a mixed feed page)."""
    items: List[FeedItem] = Field(default_factory=list)
    cursor: Optional[str] = None
    fetched_at: datetime = Field(default_factory=utc_now)

    @property
    def has_more(self) -> bool:
        return self.cursor is not None


class PendingMutation(BaseModel):
    """An optimistic action awaiting remote confirmation."""
    item_id: str
    kind: MutationKind
    applied_at: datetime = Field(default_factory=utc_now)
    committed: bool = False

    # Bookkeeping for exact rollback
    source_kind: ContentKind = ContentKind.POST
    previous_count: Optional[int] = None
    position: Optional[int] = None
    is_super_like: bool = False
    effect_applied: bool = True

    @property
    def feed_key(self) -> str:
        return f"{self.source_kind.value}:{self.item_id}"


# =============================================================================
# Realtime & Notifications
# =============================================================================

class ChangeEvent(BaseModel):
    """A change notification from a subscribed collection."""
    collection: str
    event_type: ChangeType
    record: Dict[str, Any] = Field(default_factory=dict)
    old_record: Dict[str, Any] = Field(default_factory=dict)


class Notification(BaseModel):
    message: str
    kind: NotificationKind = NotificationKind.INFO
    created_at: datetime = Field(default_factory=utc_now)
