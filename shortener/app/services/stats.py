"""Usage statistics snapshots.

The aggregator gathers the stored URL count and the most popular target
resources from storage, adds the live and peak rates from the limiter,
and hands the result to storage as a single upsert.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Protocol

from shortener.app.services.rate_limiter import SlidingWindowLimiter

logger = logging.getLogger(__name__)


@dataclass
class ResourceInfo:
    """URL count for one target resource (host)."""
    resource: str
    url_count: int


@dataclass
class Statistic:
    """Point-in-time statistics snapshot."""
    total_url_count: int
    url_per_minute: int
    day_peak: int
    leaders: list[ResourceInfo] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DayPeakRecord:
    """Last persisted peak rate and when it was written."""
    day_peak: int
    last_update: datetime


class StatsStorage(Protocol):
    """Storage operations used by the aggregator and scheduled jobs."""

    async def get_url_count(self) -> int: ...

    async def get_resource_leaders(self) -> list[ResourceInfo]: ...

    async def get_last_peak_rate(self) -> DayPeakRecord: ...

    async def update_stats(self, statistic: Statistic) -> None: ...

    async def reset_peak_rate(self) -> None: ...


class StatsAggregator:
    """Builds statistics snapshots and persists them."""

    def __init__(
        self,
        storage: StatsStorage,
        limiter: SlidingWindowLimiter,
        include_leaders: bool = True,
    ):
        self._storage = storage
        self._limiter = limiter
        self._include_leaders = include_leaders

    async def snapshot(self) -> Statistic:
        """Collect the current statistics without writing anything."""
        total = await self._storage.get_url_count()
        leaders: list[ResourceInfo] = []
        if self._include_leaders:
            leaders = await self._storage.get_resource_leaders()

        return Statistic(
            total_url_count=total,
            url_per_minute=self._limiter.get_rate(),
            day_peak=self._limiter.get_peak_rate(),
            leaders=leaders,
        )

    async def update(self) -> Statistic:
        """Take a snapshot and persist it.

        Any failure while collecting aborts before the write.
        """
        statistic = await self.snapshot()
        await self._storage.update_stats(statistic)
        logger.debug(
            "Statistics updated",
            extra={
                "total_url_count": statistic.total_url_count,
                "day_peak": statistic.day_peak,
            },
        )
        return statistic
