"""Analytics CRUD operations.

The analytics table holds a single row with the latest snapshot and the
current day peak.
"""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.app.db.models import ANALYTICS_ROW_ID, Analytics
from shortener.app.exceptions import PeakRateNotFoundError
from shortener.app.services.stats import DayPeakRecord, Statistic


def _as_aware(value: datetime) -> datetime:
    # SQLite drops the offset; stored values are always UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def get_last_peak_rate(session: AsyncSession) -> DayPeakRecord:
    """Return the persisted day peak and when it was last written.

    Raises:
        PeakRateNotFoundError: If no analytics row exists yet
    """
    result = await session.execute(
        select(Analytics.day_peak, Analytics.updated_at)
        .where(Analytics.id == ANALYTICS_ROW_ID)
    )
    row = result.one_or_none()
    if row is None:
        raise PeakRateNotFoundError()

    day_peak, updated_at = row
    return DayPeakRecord(day_peak=day_peak, last_update=_as_aware(updated_at))


async def update_stats(
    session: AsyncSession,
    statistic: Statistic,
    now: datetime | None = None,
) -> Analytics:
    """Upsert the analytics row with a new snapshot."""
    row = Analytics(
        id=ANALYTICS_ROW_ID,
        total_url_count=statistic.total_url_count,
        url_per_min=statistic.url_per_minute,
        day_peak=statistic.day_peak,
        leaders=[
            {"resource": leader.resource, "url_count": leader.url_count}
            for leader in statistic.leaders
        ],
        updated_at=now or datetime.now(timezone.utc),
    )
    merged = await session.merge(row)
    await session.flush()
    return merged


async def reset_peak_rate(session: AsyncSession) -> None:
    """Zero the persisted day peak. A missing row is left missing."""
    await session.execute(
        update(Analytics)
        .where(Analytics.id == ANALYTICS_ROW_ID)
        .values(day_peak=0)
    )


async def get_stats(session: AsyncSession) -> Analytics | None:
    return await session.get(Analytics, ANALYTICS_ROW_ID)
