"""Core utilities for the shortener application."""

from shortener.app.core.config import Settings, settings
from shortener.app.core.logging import get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
]
