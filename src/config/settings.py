"""
Centralized settings management using pydantic-settings.

All environment variables and configuration values are defined here.
Use get_settings() to access the singleton settings instance.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Required environment variables:
        - SUPABASE_URL: Supabase project URL
        - SUPABASE_SERVICE_KEY: Supabase service role key

    Optional environment variables:
        - HOST / PORT: Server binding
        - ENVIRONMENT: Environment name (development, staging, production)
        - FEED_*: Feed engine tunables (page size, TTLs, retries, limits)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Environment
    # ==========================================================================
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Debug mode")

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev", "local")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    # ==========================================================================
    # Server Configuration
    # ==========================================================================
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    cors_origins: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ],
        description="Allowed CORS origins"
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # ==========================================================================
    # Supabase Configuration
    # ==========================================================================
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_service_key: str = Field(..., description="Supabase service role key")

    # ==========================================================================
    # Feed Engine
    # ==========================================================================
    feed_page_size: int = Field(
        default=10, ge=1, le=100,
        description="Items requested per source per page"
    )
    feed_cache_ttl_seconds: float = Field(
        default=180.0, gt=0,
        description="TTL of cached source pages"
    )
    feed_source_timeout_seconds: float = Field(
        default=10.0, gt=0,
        description="Independent timeout for each source fetch"
    )
    feed_source_fetch_attempts: int = Field(
        default=2, ge=1,
        description="Attempts per source fetch inside the cache (transient retry)"
    )
    feed_page_load_attempts: int = Field(
        default=3, ge=1,
        description="Attempts for a page load when every source fails"
    )
    feed_retry_base_delay_seconds: float = Field(
        default=1.0, ge=0,
        description="Base delay of the exponential backoff between attempts"
    )
    feed_realtime_debounce_seconds: float = Field(
        default=2.0, ge=2.0,
        description="Minimum spacing between realtime-triggered refreshes"
    )
    feed_interaction_quiet_seconds: float = Field(
        default=5.0, ge=0,
        description="A viewer active within this window counts as mid-interaction"
    )
    feed_daily_swipe_limit: int = Field(
        default=100, ge=0,
        description="Maximum profile swipes per viewer per day"
    )
    feed_session_ttl_seconds: int = Field(
        default=3600,
        description="Idle lifetime of a feed session"
    )
    feed_realtime_enabled: bool = Field(
        default=True,
        description="Subscribe to realtime change notifications"
    )

    # Collection names
    feed_posts_collection: str = Field(default="feed_posts")
    feed_promoted_collection: str = Field(default="admin_content")
    feed_profiles_collection: str = Field(default="profiles")
    feed_interactions_collection: str = Field(default="user_interactions")
    feed_swipes_collection: str = Field(default="swipes")
    feed_blocks_collection: str = Field(default="blocked_users")
    feed_preferences_collection: str = Field(default="user_feed_preferences")


@lru_cache
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Uses lru_cache to ensure only one instance is created.
    Settings are loaded from environment variables and .env file.

    Raises:
        ValidationError: If required environment variables are missing
    """
    env_file = Path(__file__).parent.parent.parent / ".env"
    if env_file.exists():
        os.environ.setdefault("ENV_FILE", str(env_file))

    return Settings(_env_file=env_file if env_file.exists() else None)


def get_settings_for_testing(**overrides) -> Settings:
    """
    Create a settings instance for testing with optional overrides.

    This bypasses the cache to allow different settings in tests.
    """
    test_defaults = {
        "supabase_url": "https://test.supabase.co",
        "supabase_service_key": "test-key",
        "environment": "testing",
        "debug": True,
    }
    test_defaults.update(overrides)

    return Settings(**test_defaults)
