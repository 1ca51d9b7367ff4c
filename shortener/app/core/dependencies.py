"""Request-scoped accessors for objects owned by the application.

``create_app`` stores its settings and limiter on ``app.state``; these
helpers fetch them so handlers never reach for module-level globals.
"""

from typing import Annotated

from fastapi import Depends, Request

from shortener.app.core.config import Settings, settings
from shortener.app.services.rate_limiter import SlidingWindowLimiter


def get_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", settings)


def get_rate_limiter(request: Request) -> SlidingWindowLimiter:
    return request.app.state.rate_limiter


SettingsDep = Annotated[Settings, Depends(get_settings)]
LimiterDep = Annotated[SlidingWindowLimiter, Depends(get_rate_limiter)]
