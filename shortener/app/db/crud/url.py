"""Short URL CRUD operations."""
from __future__ import annotations

from sqlalchemy import delete, desc, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.app.core.utils import extract_resource
from shortener.app.db.models import Url
from shortener.app.exceptions import URLExistsError, URLNotFoundError
from shortener.app.services.stats import ResourceInfo


async def save_url(session: AsyncSession, url: str, alias: str) -> Url:
    """Store a URL under an alias.

    The row is flushed but not committed; the caller owns the transaction.

    Raises:
        URLExistsError: If the alias is already taken
    """
    record = Url(alias=alias, url=url, resource=extract_resource(url))
    session.add(record)
    try:
        # Flush to surface unique alias conflicts before the caller commits.
        await session.flush()
    except IntegrityError as e:
        raise URLExistsError(alias) from e
    return record


async def alias_exists(session: AsyncSession, alias: str) -> bool:
    result = await session.execute(select(Url.id).where(Url.alias == alias))
    return result.scalar_one_or_none() is not None


async def get_url(session: AsyncSession, alias: str) -> str:
    """Look up the URL stored under an alias.

    Raises:
        URLNotFoundError: If no URL is stored under the alias
    """
    result = await session.execute(select(Url.url).where(Url.alias == alias))
    url = result.scalar_one_or_none()
    if url is None:
        raise URLNotFoundError(alias)
    return url


async def delete_url(session: AsyncSession, alias: str) -> None:
    """Delete the URL stored under an alias.

    Raises:
        URLNotFoundError: If no URL is stored under the alias
    """
    result = await session.execute(delete(Url).where(Url.alias == alias))
    if result.rowcount == 0:
        raise URLNotFoundError(alias)


async def get_url_count(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(Url))
    return int(result.scalar_one())


async def get_resource_leaders(session: AsyncSession, limit: int = 3) -> list[ResourceInfo]:
    """Return the resources with the most stored URLs, most popular first.

    Ties are broken alphabetically so the ordering is stable.
    """
    url_count = func.count(Url.id).label("url_count")
    result = await session.execute(
        select(Url.resource, url_count)
        .group_by(Url.resource)
        .order_by(desc(url_count), Url.resource)
        .limit(limit)
    )
    return [
        ResourceInfo(resource=resource, url_count=int(count))
        for resource, count in result.all()
    ]
