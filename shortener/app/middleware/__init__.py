"""Middleware package for the shortener."""

from shortener.app.middleware.auth import is_authenticated, require_basic_auth
from shortener.app.middleware.rate_limit import RateLimitMiddleware
from shortener.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "is_authenticated",
    "require_basic_auth",
    "RateLimitMiddleware",
    "RequestIdMiddleware",
    "get_request_id",
]
