# src/forum_topics/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import topics_router

__all__ = ["topics_router"]
