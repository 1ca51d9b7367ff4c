"""API endpoints package for the shortener."""

from shortener.app.api.redirect import router as redirect_router
from shortener.app.api.stats import router as stats_router
from shortener.app.api.urls import router as urls_router

__all__ = [
    "redirect_router",
    "stats_router",
    "urls_router",
]
