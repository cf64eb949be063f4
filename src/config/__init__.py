"""
Configuration module for the feed engine.

This module provides centralized configuration management using pydantic-settings.
All environment variables and configuration values should be accessed through this module.

Usage:
    from config import get_settings

    settings = get_settings()
    ttl = settings.feed_cache_ttl_seconds
"""

from config.settings import Settings, get_settings, get_settings_for_testing

__all__ = ["Settings", "get_settings", "get_settings_for_testing"]
