"""
Database client singletons.

Provides the shared async Supabase client used by the feed store.
The client is created lazily on first use and reused afterwards.
"""

from typing import Optional

from supabase import AsyncClient, acreate_client

from config.settings import Settings, get_settings
from core.logging import get_logger


logger = get_logger(__name__)


class SupabaseClientError(Exception):
    """Raised when Supabase client cannot be created."""
    pass


_client: Optional[AsyncClient] = None


async def get_supabase_client(settings: Optional[Settings] = None) -> AsyncClient:
    """
    Get the singleton async Supabase client instance.

    Args:
        settings: Settings to read credentials from (defaults to get_settings())

    Returns:
        AsyncClient: The Supabase client instance

    Raises:
        SupabaseClientError: If client cannot be created
    """
    global _client
    if _client is not None:
        return _client

    try:
        settings = settings or get_settings()
        _client = await acreate_client(settings.supabase_url, settings.supabase_service_key)
    except Exception as e:
        raise SupabaseClientError(f"Failed to create Supabase client: {e}") from e

    logger.info("Supabase client created", url=settings.supabase_url)
    return _client


def reset_supabase_client() -> None:
    """Drop the cached client. Useful for testing."""
    global _client
    _client = None

