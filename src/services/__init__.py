"""
Services module for business logic.

Provides session management for live feed sessions.
"""

from services.session_manager import FeedSessionManager, SessionData

__all__ = [
    "FeedSessionManager",
    "SessionData",
]
