"""Global admission control for write endpoints.

Every protected request that passes authentication asks the shared
sliding-window limiter for admission. Unauthenticated requests skip the
limiter and are rejected by the route's auth dependency. Denied requests
get ``503 Service Unavailable`` with a ``Retry-After`` header equal to the
window length; admitted requests are forwarded and then recorded in the
window.
"""

from typing import Awaitable, Callable, Iterable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from shortener.app.core.logging import get_logger
from shortener.app.services.rate_limiter import SlidingWindowLimiter

logger = get_logger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce the global write rate.

    The limit is shared by all clients. Only requests whose path starts
    with one of ``protected_prefixes`` and whose method is in
    ``protected_methods`` are counted.
    """

    def __init__(
        self,
        app,
        limiter: SlidingWindowLimiter,
        protected_prefixes: Iterable[str] = ("/url",),
        protected_methods: Iterable[str] = ("POST", "PUT", "PATCH", "DELETE"),
        count_failed_requests: bool = True,
        authenticate: Optional[Callable[[Request], Awaitable[bool]]] = None,
    ):
        """Initialize the middleware.

        Args:
            app: ASGI application
            limiter: Shared limiter instance
            protected_prefixes: Path prefixes subject to admission control
            protected_methods: HTTP methods subject to admission control
            count_failed_requests: Record requests whose handler raised or
                returned 5xx; when False only responses below 500 count
            authenticate: Checked before admission; requests it rejects are
                neither admitted nor recorded
        """
        super().__init__(app)
        self.limiter = limiter
        self.protected_prefixes = tuple(protected_prefixes)
        self.protected_methods = frozenset(m.upper() for m in protected_methods)
        self.count_failed_requests = count_failed_requests
        self.authenticate = authenticate

    def _is_protected(self, request: Request) -> bool:
        return (
            request.method.upper() in self.protected_methods
            and request.url.path.startswith(self.protected_prefixes)
        )

    def _deny(self, request: Request, rate: int) -> Response:
        retry_after = int(self.limiter.get_limit().total_seconds())
        logger.warning(
            f"Rate limit exceeded (rate={rate})",
            extra={
                "request_id": getattr(request.state, "request_id", None),
                "rate": rate,
                "path": request.url.path,
                "method": request.method,
            },
        )
        return JSONResponse(
            status_code=503,
            content={
                "error": "rate_limit_exceeded",
                "message": "Service is over capacity. Please try again later.",
                "retry_after": retry_after,
            },
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(self.limiter.config.lock_threshold),
                "X-RateLimit-Rate": str(rate),
            },
        )

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with admission control."""
        if not self._is_protected(request):
            return await call_next(request)

        if self.authenticate is not None and not await self.authenticate(request):
            return await call_next(request)

        rate, allowed = self.limiter.allow()
        if not allowed:
            return self._deny(request, rate)

        if self.count_failed_requests:
            try:
                response = await call_next(request)
            finally:
                self.limiter.add()
        else:
            response = await call_next(request)
            if response.status_code < 500:
                self.limiter.add()

        response.headers["X-RateLimit-Limit"] = str(self.limiter.config.lock_threshold)
        response.headers["X-RateLimit-Rate"] = str(rate)
        return response
