"""Database package for the shortener.

This package provides:
- Database models (Url, Analytics)
- Asynchronous session management
- CRUD operations for all models
- FastAPI dependency injection support
"""

from shortener.app.db.base import Base
from shortener.app.db.models import Analytics, Url
from shortener.app.db.async_session import (
    close_async_engine,
    get_async_engine,
    get_async_session_maker,
    get_db,
)
from shortener.app.db.dependencies import SessionDep

__all__ = [
    # Base
    "Base",
    # Models
    "Analytics",
    "Url",
    # Session
    "close_async_engine",
    "get_async_engine",
    "get_async_session_maker",
    "get_db",
    # FastAPI Dependencies
    "SessionDep",
]
