"""Short URL management endpoints (Basic auth, rate limited)."""

from __future__ import annotations

import re
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.app.core.dependencies import SettingsDep
from shortener.app.core.logging import get_log_context, get_logger
from shortener.app.core.utils import extract_resource, generate_alias, normalize_url
from shortener.app.db.crud import alias_exists, delete_url, save_url
from shortener.app.db.dependencies import SessionDep
from shortener.app.exceptions import URLExistsError
from shortener.app.middleware.auth import require_basic_auth
from shortener.app.middleware.request_id import get_request_id

logger = get_logger(__name__)

router = APIRouter(
    prefix="/url",
    tags=["url"],
    dependencies=[Depends(require_basic_auth)],
)

ALIAS_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
# Top-level paths served by the application itself
RESERVED_ALIASES = frozenset({"url", "stats", "health", "docs", "redoc"})
MAX_ALIAS_ATTEMPTS = 5


class SaveURLRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)
    alias: Optional[str] = Field(default=None, max_length=64)

    @field_validator("url")
    @classmethod
    def normalize_target(cls, v: str) -> str:
        v = normalize_url(v)
        if not extract_resource(v):
            raise ValueError("url must include a host")
        return v

    @field_validator("alias")
    @classmethod
    def normalize_alias(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        if not ALIAS_PATTERN.match(v):
            raise ValueError("alias may contain only letters, digits, '-' and '_'")
        if v.lower() in RESERVED_ALIASES:
            raise ValueError(f"alias '{v}' is reserved")
        return v


class SaveURLResponse(BaseModel):
    status: str = "OK"
    alias: str


class StatusResponse(BaseModel):
    status: str = "OK"


async def _generate_unique_alias(session: AsyncSession, length: int) -> str:
    for _ in range(MAX_ALIAS_ATTEMPTS):
        alias = generate_alias(length)
        if not await alias_exists(session, alias):
            return alias
    raise URLExistsError(alias)


@router.post(
    "/",
    response_model=SaveURLResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_short_url(
    data: SaveURLRequest,
    request: Request,
    session: SessionDep,
    app_settings: SettingsDep,
) -> SaveURLResponse:
    """Store a URL under the given alias, or a random one if none is given."""
    alias = data.alias
    if alias is None:
        alias = await _generate_unique_alias(session, app_settings.alias_length)

    await save_url(session, data.url, alias)

    logger.info(
        "URL saved",
        extra=get_log_context(request_id=get_request_id(request), alias=alias),
    )
    return SaveURLResponse(alias=alias)


@router.delete("/{alias}", response_model=StatusResponse)
async def delete_short_url(
    alias: str,
    request: Request,
    session: SessionDep,
) -> StatusResponse:
    """Delete the URL stored under an alias."""
    await delete_url(session, alias)

    logger.info(
        "URL deleted",
        extra=get_log_context(request_id=get_request_id(request), alias=alias),
    )
    return StatusResponse()
