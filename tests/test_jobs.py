"""Tests for the peak reset and analytics jobs."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock
from zoneinfo import ZoneInfo

import pytest

from shortener.app.core.config import Settings
from shortener.app.exceptions import (
    ConfigurationError,
    PeakRateNotFoundError,
    StorageError,
)
from shortener.app.services.jobs import (
    ANALYTICS_JOB,
    PEAK_RATE_RESET_JOB,
    AnalyticsJob,
    PeakRateResetJob,
    build_scheduler,
    start_analytics_tick,
    start_daily_reset,
)
from shortener.app.services.rate_limiter import LimiterConfig, SlidingWindowLimiter
from shortener.app.services.stats import DayPeakRecord

UTC = timezone.utc
MOSCOW = ZoneInfo("Europe/Moscow")


@pytest.fixture
def limiter():
    return SlidingWindowLimiter(LimiterConfig(100, 10, timedelta(minutes=1)))


@pytest.fixture
def storage():
    return AsyncMock()


def fixed_now(moment: datetime):
    return lambda tz: moment.astimezone(tz)


class TestPeakRateResetJob:
    """Tests for the daily peak reset."""

    @pytest.mark.asyncio
    async def test_resets_memory_and_storage(self, limiter, storage):
        limiter.set_peak_rate(42)

        await PeakRateResetJob(limiter, storage)()

        assert limiter.get_peak_rate() == 0
        storage.reset_peak_rate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_storage_failure_keeps_memory_reset(self, limiter, storage):
        limiter.set_peak_rate(42)
        storage.reset_peak_rate.side_effect = StorageError("reset_peak_rate")

        # Does not raise
        await PeakRateResetJob(limiter, storage)()

        assert limiter.get_peak_rate() == 0


class TestAnalyticsJobSeed:
    """Tests for restoring the day peak at startup."""

    def make_job(self, limiter, storage, now):
        return AnalyticsJob(Mock(), limiter, storage, MOSCOW, now=fixed_now(now))

    @pytest.mark.asyncio
    async def test_seeds_peak_from_today(self, limiter, storage):
        storage.get_last_peak_rate.return_value = DayPeakRecord(
            day_peak=77, last_update=datetime(2024, 5, 10, 9, 0, tzinfo=UTC)
        )
        job = self.make_job(limiter, storage, datetime(2024, 5, 10, 12, 0, tzinfo=UTC))

        assert await job.seed() is True
        assert limiter.get_peak_rate() == 77

    @pytest.mark.asyncio
    async def test_same_day_is_judged_in_location(self, limiter, storage):
        # 22:00 UTC on the 9th is 01:00 on the 10th in Moscow
        storage.get_last_peak_rate.return_value = DayPeakRecord(
            day_peak=12, last_update=datetime(2024, 5, 9, 22, 0, tzinfo=UTC)
        )
        job = self.make_job(limiter, storage, datetime(2024, 5, 10, 6, 0, tzinfo=UTC))

        assert await job.seed() is True
        assert limiter.get_peak_rate() == 12

    @pytest.mark.asyncio
    async def test_ignores_stale_record(self, limiter, storage):
        storage.get_last_peak_rate.return_value = DayPeakRecord(
            day_peak=77, last_update=datetime(2024, 5, 9, 9, 0, tzinfo=UTC)
        )
        job = self.make_job(limiter, storage, datetime(2024, 5, 10, 12, 0, tzinfo=UTC))

        assert await job.seed() is False
        assert limiter.get_peak_rate() == 0

    @pytest.mark.asyncio
    async def test_ignores_zero_peak(self, limiter, storage):
        storage.get_last_peak_rate.return_value = DayPeakRecord(
            day_peak=0, last_update=datetime(2024, 5, 10, 9, 0, tzinfo=UTC)
        )
        job = self.make_job(limiter, storage, datetime(2024, 5, 10, 12, 0, tzinfo=UTC))

        assert await job.seed() is False

    @pytest.mark.asyncio
    async def test_missing_record_means_no_seed(self, limiter, storage):
        storage.get_last_peak_rate.side_effect = PeakRateNotFoundError()
        job = self.make_job(limiter, storage, datetime(2024, 5, 10, 12, 0, tzinfo=UTC))

        assert await job.seed() is False
        assert limiter.get_peak_rate() == 0

    @pytest.mark.asyncio
    async def test_storage_failure_is_tolerated(self, limiter, storage):
        storage.get_last_peak_rate.side_effect = StorageError("get_last_peak_rate")
        job = self.make_job(limiter, storage, datetime(2024, 5, 10, 12, 0, tzinfo=UTC))

        assert await job.seed() is False


class TestAnalyticsJobTick:
    """Tests for the per-tick snapshot."""

    @pytest.mark.asyncio
    async def test_call_updates_aggregator(self, limiter, storage):
        aggregator = Mock()
        aggregator.update = AsyncMock()
        job = AnalyticsJob(aggregator, limiter, storage, MOSCOW)

        await job()

        aggregator.update.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_call_propagates_failure(self, limiter, storage):
        aggregator = Mock()
        aggregator.update = AsyncMock(side_effect=StorageError("update_stats"))
        job = AnalyticsJob(aggregator, limiter, storage, MOSCOW)

        with pytest.raises(StorageError):
            await job()


class TestLoops:
    """Tests for the standalone long-running loops."""

    @pytest.mark.asyncio
    async def test_analytics_tick_seeds_and_snapshots_first(self, limiter, storage):
        storage.get_last_peak_rate.side_effect = PeakRateNotFoundError()
        aggregator = Mock()
        aggregator.update = AsyncMock()
        stop_event = asyncio.Event()
        stop_event.set()

        await asyncio.wait_for(
            start_analytics_tick(aggregator, limiter, storage, MOSCOW, stop_event),
            timeout=1.0,
        )

        storage.get_last_peak_rate.assert_awaited_once()
        aggregator.update.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_analytics_tick_survives_failed_first_snapshot(self, limiter, storage):
        storage.get_last_peak_rate.side_effect = PeakRateNotFoundError()
        aggregator = Mock()
        aggregator.update = AsyncMock(side_effect=StorageError("update_stats"))
        stop_event = asyncio.Event()
        stop_event.set()

        await asyncio.wait_for(
            start_analytics_tick(aggregator, limiter, storage, MOSCOW, stop_event),
            timeout=1.0,
        )

        aggregator.update.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_daily_reset_exits_on_cancel(self, limiter, storage):
        limiter.set_peak_rate(5)
        stop_event = asyncio.Event()

        task = asyncio.create_task(
            start_daily_reset(limiter, storage, MOSCOW, stop_event)
        )
        await asyncio.sleep(0.05)
        stop_event.set()
        await asyncio.wait_for(task, timeout=1.0)

        # Midnight never came, so nothing was reset
        assert limiter.get_peak_rate() == 5
        storage.reset_peak_rate.assert_not_awaited()


class TestBuildScheduler:
    """Tests for wiring both jobs into one scheduler."""

    def test_registers_both_jobs(self, limiter, storage):
        app_settings = Settings(location="Europe/Moscow")
        scheduler, analytics = build_scheduler(app_settings, limiter, storage, Mock())

        assert [job.name for job in scheduler.jobs] == [PEAK_RATE_RESET_JOB, ANALYTICS_JOB]
        assert scheduler.location == MOSCOW
        assert isinstance(analytics, AnalyticsJob)

    def test_invalid_location_is_fatal(self, limiter, storage):
        # Skip settings validation to exercise the scheduler check
        app_settings = Settings.model_construct(location="Nowhere/Special")

        with pytest.raises(ConfigurationError):
            build_scheduler(app_settings, limiter, storage, Mock())
