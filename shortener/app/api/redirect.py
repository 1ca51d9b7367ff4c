"""Public redirect endpoint.

Registered last so the catch-all ``/{alias}`` path never shadows the
application's own routes.
"""

from fastapi import APIRouter, Request, status
from fastapi.responses import RedirectResponse

from shortener.app.core.logging import get_log_context, get_logger
from shortener.app.db.crud import get_url
from shortener.app.db.dependencies import SessionDep
from shortener.app.middleware.request_id import get_request_id

logger = get_logger(__name__)

router = APIRouter(tags=["redirect"])


@router.get("/{alias}", response_class=RedirectResponse)
async def redirect(alias: str, request: Request, session: SessionDep) -> RedirectResponse:
    url = await get_url(session, alias)
    logger.debug(
        f"Redirecting to {url}",
        extra=get_log_context(request_id=get_request_id(request), alias=alias),
    )
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)
