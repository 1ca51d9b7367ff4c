"""Session-owning storage used by background jobs.

Request handlers share the per-request session from ``get_db``. Jobs run
outside any request, so each call here opens, commits and closes its own
session and reports driver failures as ``StorageError``.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.app.db.crud import analytics as analytics_crud
from shortener.app.db.crud import url as url_crud
from shortener.app.db.models import Analytics
from shortener.app.exceptions import StorageError
from shortener.app.services.stats import DayPeakRecord, ResourceInfo, Statistic

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SQLStorage:
    """Statistics storage backed by the SQLAlchemy session maker."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        leaders_limit: int = 3,
    ):
        self._session_maker = session_maker
        self._leaders_limit = leaders_limit

    async def _run(
        self,
        operation: str,
        func: Callable[[AsyncSession], Awaitable[T]],
        commit: bool = False,
    ) -> T:
        async with self._session_maker() as session:
            try:
                result = await func(session)
                if commit:
                    await session.commit()
                return result
            except SQLAlchemyError as e:
                await session.rollback()
                raise StorageError(operation, e) from e

    async def get_url_count(self) -> int:
        return await self._run("get_url_count", url_crud.get_url_count)

    async def get_resource_leaders(self) -> list[ResourceInfo]:
        return await self._run(
            "get_resource_leaders",
            lambda session: url_crud.get_resource_leaders(session, self._leaders_limit),
        )

    async def get_last_peak_rate(self) -> DayPeakRecord:
        """Return the persisted peak.

        Raises:
            PeakRateNotFoundError: If no analytics row exists yet
            StorageError: If the query fails
        """
        return await self._run("get_last_peak_rate", analytics_crud.get_last_peak_rate)

    async def update_stats(self, statistic: Statistic) -> None:
        async def write(session: AsyncSession) -> Any:
            return await analytics_crud.update_stats(session, statistic)

        await self._run("update_stats", write, commit=True)

    async def reset_peak_rate(self) -> None:
        await self._run("reset_peak_rate", analytics_crud.reset_peak_rate, commit=True)

    async def get_stats(self) -> Optional[Analytics]:
        return await self._run("get_stats", analytics_crud.get_stats)
