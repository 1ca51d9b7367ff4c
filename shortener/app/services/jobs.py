"""Recurring background jobs: the daily peak reset and the analytics tick."""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from shortener.app.core.config import Settings
from shortener.app.exceptions import PeakRateNotFoundError
from shortener.app.services.rate_limiter import SlidingWindowLimiter
from shortener.app.services.scheduler import CronSchedule, JobScheduler, load_location
from shortener.app.services.stats import StatsAggregator, StatsStorage

logger = logging.getLogger(__name__)

PEAK_RATE_RESET_JOB = "peak-rate-reset"
ANALYTICS_JOB = "analytics"


class PeakRateResetJob:
    """Clears the day peak, in memory first and then in storage.

    A storage failure is logged and does not undo the in-memory reset.
    """

    def __init__(self, limiter: SlidingWindowLimiter, storage: StatsStorage):
        self._limiter = limiter
        self._storage = storage

    async def __call__(self) -> None:
        peak = self._limiter.get_peak_rate()
        self._limiter.reset_peak_rate()
        logger.info(
            f"Reset day peak rate (was {peak})",
            extra={"job": PEAK_RATE_RESET_JOB, "rate": peak},
        )

        try:
            await self._storage.reset_peak_rate()
        except Exception as e:
            logger.error(
                f"Failed to reset persisted peak rate: {e}",
                extra={"job": PEAK_RATE_RESET_JOB},
            )


class AnalyticsJob:
    """Periodically persists a statistics snapshot.

    ``seed()`` restores today's peak after a restart so the day peak does
    not start over from zero mid-day.
    """

    def __init__(
        self,
        aggregator: StatsAggregator,
        limiter: SlidingWindowLimiter,
        storage: StatsStorage,
        location: ZoneInfo,
        now: Optional[Callable[[ZoneInfo], datetime]] = None,
    ):
        self._aggregator = aggregator
        self._limiter = limiter
        self._storage = storage
        self._location = location
        self._now = now or (lambda tz: datetime.now(tz))

    async def seed(self) -> bool:
        """Seed the limiter peak from storage.

        Returns:
            True if a peak from today was restored
        """
        try:
            record = await self._storage.get_last_peak_rate()
        except PeakRateNotFoundError:
            logger.debug("No persisted peak rate, starting from zero")
            return False
        except Exception as e:
            logger.warning(
                f"Could not read persisted peak rate: {e}",
                extra={"job": ANALYTICS_JOB},
            )
            return False

        today = self._now(self._location).date()
        if record.last_update.astimezone(self._location).date() != today:
            logger.debug("Persisted peak rate is from an earlier day, ignoring")
            return False
        if record.day_peak <= 0:
            return False

        self._limiter.set_peak_rate(record.day_peak)
        logger.info(
            f"Restored day peak rate {record.day_peak}",
            extra={"job": ANALYTICS_JOB, "rate": record.day_peak},
        )
        return True

    async def __call__(self) -> None:
        await self._aggregator.update()


async def _run_single(
    name: str,
    cron: str,
    func: Callable,
    location: ZoneInfo,
    stop_event: asyncio.Event,
) -> None:
    scheduler = JobScheduler(location)
    scheduler.add_job(name, CronSchedule.parse(cron), func)
    await scheduler.run(stop_event)


async def start_daily_reset(
    limiter: SlidingWindowLimiter,
    storage: StatsStorage,
    location: ZoneInfo,
    stop_event: asyncio.Event,
    cron: str = "0 0 * * *",
) -> None:
    """Reset the peak rate at every local midnight until ``stop_event`` is set."""
    await _run_single(
        PEAK_RATE_RESET_JOB,
        cron,
        PeakRateResetJob(limiter, storage),
        location,
        stop_event,
    )


async def start_analytics_tick(
    aggregator: StatsAggregator,
    limiter: SlidingWindowLimiter,
    storage: StatsStorage,
    location: ZoneInfo,
    stop_event: asyncio.Event,
    cron: str = "* * * * *",
) -> None:
    """Persist statistics at every minute boundary until ``stop_event`` is set.

    The peak is seeded from storage and one snapshot is written right away,
    before the first boundary.
    """
    job = AnalyticsJob(aggregator, limiter, storage, location)
    await job.seed()
    try:
        await job()
    except Exception as e:
        logger.warning(
            f"Initial statistics snapshot failed: {e}",
            extra={"job": ANALYTICS_JOB},
        )
    await _run_single(ANALYTICS_JOB, cron, job, location, stop_event)


def build_scheduler(
    app_settings: Settings,
    limiter: SlidingWindowLimiter,
    storage: StatsStorage,
    aggregator: StatsAggregator,
) -> tuple[JobScheduler, AnalyticsJob]:
    """Build one scheduler running both jobs on the configured patterns.

    Raises:
        ConfigurationError: If the time zone or a cron pattern is invalid
    """
    location = load_location(app_settings.location)
    scheduler = JobScheduler(location)
    analytics = AnalyticsJob(aggregator, limiter, storage, location)

    scheduler.add_job(
        PEAK_RATE_RESET_JOB,
        CronSchedule.parse(app_settings.peak_reset_cron),
        PeakRateResetJob(limiter, storage),
    )
    scheduler.add_job(
        ANALYTICS_JOB,
        CronSchedule.parse(app_settings.analytics_cron),
        analytics,
    )
    return scheduler, analytics
