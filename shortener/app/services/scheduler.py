"""In-process cron scheduler for recurring background jobs.

Jobs are named coroutines paired with a schedule. The scheduler keeps a
heap of ``(next_fire_time, job)`` entries, sleeps until the earliest one
is due, runs every due job and re-arms it. Each next fire time is
recomputed from the current wall clock in the configured time zone rather
than by adding a fixed period, so the schedule stays aligned to local
boundaries (midnight, the top of the minute) across clock and DST changes.
"""

import asyncio
import heapq
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional, Protocol, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from shortener.app.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[None]]

CRON_ALIASES = {
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
    "@minutely": "* * * * *",
}

# (name, low, high) for minute, hour, day of month, month, day of week
_CRON_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("weekday", 0, 7),
)

# Upper bound on the search; every valid expression fires within 4 years (Feb 29).
_MAX_SEARCH_DAYS = 366 * 4 + 1

_ALL_HOURS = frozenset(range(24))


def load_location(name: str) -> ZoneInfo:
    """Resolve an IANA time zone name.

    Raises:
        ConfigurationError: If the zone cannot be found
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown time zone: {name!r}") from e


class Schedule(Protocol):
    def next_after(self, moment: datetime) -> datetime:
        ...


def _parse_field(raw: str, name: str, low: int, high: int) -> Tuple[FrozenSet[int], bool]:
    values = set()
    for part in raw.split(","):
        step = 1
        if "/" in part:
            part, step_raw = part.split("/", 1)
            if not step_raw.isdigit() or int(step_raw) < 1:
                raise ConfigurationError(f"Invalid step in cron {name} field: {raw!r}")
            step = int(step_raw)

        if part == "*":
            start, end = low, high
        elif "-" in part:
            start_raw, end_raw = part.split("-", 1)
            if not (start_raw.isdigit() and end_raw.isdigit()):
                raise ConfigurationError(f"Invalid range in cron {name} field: {raw!r}")
            start, end = int(start_raw), int(end_raw)
        elif part.isdigit():
            start = int(part)
            end = high if step > 1 else start
        else:
            raise ConfigurationError(f"Invalid cron {name} field: {raw!r}")

        if start < low or end > high or start > end:
            raise ConfigurationError(
                f"Cron {name} field out of range {low}-{high}: {raw!r}"
            )
        values.update(range(start, end + 1, step))

    return frozenset(values), raw == "*"


@dataclass(frozen=True)
class CronSchedule:
    """Five-field cron expression: minute hour day-of-month month day-of-week.

    Supports ``*``, ``*/n``, ``a-b``, ``a-b/n``, comma lists and the
    ``@daily``/``@midnight``/``@hourly``/``@minutely`` aliases. Day of week
    is 0-6 with Sunday as 0 (7 is accepted as Sunday too).
    """
    expression: str
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days: FrozenSet[int]
    months: FrozenSet[int]
    weekdays: FrozenSet[int]
    day_wildcard: bool
    weekday_wildcard: bool

    @classmethod
    def parse(cls, expression: str) -> "CronSchedule":
        """Parse a cron expression.

        Raises:
            ConfigurationError: If the expression is malformed
        """
        expr = expression.strip()
        fields = CRON_ALIASES.get(expr.lower(), expr).split()
        if len(fields) != 5:
            raise ConfigurationError(
                f"Cron expression must have 5 fields, got {len(fields)}: {expression!r}"
            )

        parsed = [
            _parse_field(raw, name, low, high)
            for raw, (name, low, high) in zip(fields, _CRON_FIELDS)
        ]
        weekdays = frozenset(d % 7 for d in parsed[4][0])

        return cls(
            expression=expr,
            minutes=parsed[0][0],
            hours=parsed[1][0],
            days=parsed[2][0],
            months=parsed[3][0],
            weekdays=weekdays,
            day_wildcard=parsed[2][1],
            weekday_wildcard=parsed[4][1],
        )

    def _day_matches(self, day: datetime) -> bool:
        in_days = day.day in self.days
        # isoweekday: Monday=1 .. Sunday=7
        in_weekdays = day.isoweekday() % 7 in self.weekdays
        if self.day_wildcard or self.weekday_wildcard:
            return in_days and in_weekdays
        return in_days or in_weekdays

    def _matches(self, local: datetime) -> bool:
        return (
            local.month in self.months
            and self._day_matches(local)
            and local.hour in self.hours
            and local.minute in self.minutes
        )

    def _wall_candidates(self, wall: datetime, tz: tzinfo) -> List[datetime]:
        first = wall.replace(tzinfo=tz, fold=0)
        normalised = first.astimezone(timezone.utc).astimezone(tz)
        if normalised.replace(tzinfo=None) != wall:
            # Wall time skipped by a DST gap; fire at the shifted instant.
            return [normalised]
        second = wall.replace(tzinfo=tz, fold=1)
        if self.hours == _ALL_HOURS and second.utcoffset() != first.utcoffset():
            # Repeated hour after clocks go back; hourly schedules fire in both.
            return [first, second]
        return [first]

    def next_after(self, moment: datetime) -> datetime:
        """Return the first fire time strictly after ``moment``.

        The expression is evaluated in the wall-clock time of
        ``moment.tzinfo``; the result carries the same tzinfo. Ordering is
        by absolute time, so DST transitions never move a fire time into
        the past.
        """
        if moment.tzinfo is None:
            raise ValueError("moment must be timezone-aware")
        tz = moment.tzinfo
        after = moment.astimezone(timezone.utc)

        # Walk naive wall-clock time, then attach the zone to each match.
        wall = moment.replace(tzinfo=None, fold=0, second=0, microsecond=0) + timedelta(minutes=1)
        limit = wall + timedelta(days=_MAX_SEARCH_DAYS)

        while wall <= limit:
            if wall.month not in self.months:
                year, month = divmod(wall.month, 12)
                wall = datetime(wall.year + year, month + 1, 1)
                continue
            if not self._day_matches(wall):
                wall = datetime.combine(wall.date() + timedelta(days=1), time())
                continue
            if wall.hour not in self.hours:
                wall = wall.replace(minute=0) + timedelta(hours=1)
                continue
            if wall.minute not in self.minutes:
                wall += timedelta(minutes=1)
                continue

            for candidate in self._wall_candidates(wall, tz):
                if candidate.astimezone(timezone.utc) > after:
                    return self._repeated_before(candidate, moment) or candidate
            wall += timedelta(minutes=1)

        raise ConfigurationError(f"Cron expression never fires: {self.expression!r}")

    def _repeated_before(self, candidate: datetime, moment: datetime) -> Optional[datetime]:
        """Find a match in a repeated hour that the wall-clock walk stepped over.

        Only hourly schedules fire in the repeated hour, and only when the
        clocks went back between ``moment`` and ``candidate``.
        """
        if self.hours != _ALL_HOURS or candidate.utcoffset() >= moment.utcoffset():
            return None
        tz = moment.tzinfo
        step = moment.astimezone(timezone.utc).replace(second=0, microsecond=0) + timedelta(minutes=1)
        end = candidate.astimezone(timezone.utc)
        while step < end:
            local = step.astimezone(tz)
            if self._matches(local):
                return local
            step += timedelta(minutes=1)
        return None

    def __str__(self) -> str:
        return self.expression


@dataclass
class ScheduledJob:
    """A named job registered with the scheduler."""
    name: str
    schedule: Schedule
    func: JobFunc
    next_run: Optional[datetime] = None
    runs: int = 0
    failures: int = 0
    last_error: Optional[str] = field(default=None, repr=False)


class JobScheduler:
    """Runs named jobs on cron-like schedules until cancelled.

    Usage:
        scheduler = JobScheduler(load_location("Europe/Moscow"))
        scheduler.add_job("analytics", CronSchedule.parse("* * * * *"), update_stats)

        await scheduler.start()
        ...
        await scheduler.stop()

    Cancellation is cooperative. Stopping the scheduler while it waits for
    the next boundary exits without firing; a job that is already running
    finishes first.
    """

    def __init__(
        self,
        location: ZoneInfo,
        now: Optional[Callable[[ZoneInfo], datetime]] = None,
        stop_timeout: float = 5.0,
    ):
        """Initialize the scheduler.

        Args:
            location: Time zone the schedules are evaluated in
            now: Wall-clock source, ``datetime.now(tz)`` by default
            stop_timeout: Seconds ``stop()`` waits before cancelling the task
        """
        self._location = location
        self._now = now or (lambda tz: datetime.now(tz))
        self._stop_timeout = stop_timeout
        self._jobs: Dict[str, ScheduledJob] = {}
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._seq = itertools.count()

    @property
    def location(self) -> ZoneInfo:
        return self._location

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def jobs(self) -> List[ScheduledJob]:
        return list(self._jobs.values())

    def add_job(self, name: str, schedule: Schedule, func: JobFunc) -> ScheduledJob:
        """Register a job. Names must be unique."""
        if name in self._jobs:
            raise ValueError(f"Job '{name}' is already registered")
        job = ScheduledJob(name=name, schedule=schedule, func=func)
        self._jobs[name] = job
        logger.debug(f"Registered job '{name}' ({schedule})")
        return job

    async def start(self) -> None:
        """Start the scheduler loop as a background task."""
        if self.running:
            logger.debug("Scheduler already running")
            return

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self.run(self._stop_event))
        logger.info(
            f"Started scheduler with {len(self._jobs)} job(s)",
            extra={"location": str(self._location)},
        )

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it to exit."""
        if self._task is None:
            return

        self._stop_event.set()

        try:
            await asyncio.wait_for(self._task, timeout=self._stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("Scheduler did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("Stopped scheduler")

    def _utcnow(self) -> datetime:
        return self._now(self._location).astimezone(timezone.utc)

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run all registered jobs until ``stop_event`` is set.

        The heap holds UTC fire times so delays and due checks are real
        elapsed time even on days with a DST transition.
        """
        heap: List[Tuple[datetime, int, ScheduledJob]] = []
        now = self._utcnow()
        for job in self._jobs.values():
            self._arm(heap, job, now)

        while heap and not stop_event.is_set():
            fire_at = heap[0][0]
            delay = (fire_at - self._utcnow()).total_seconds()

            if delay > 0:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    # Normal case: boundary reached
                    pass
                if stop_event.is_set():
                    break
                if self._utcnow() < fire_at:
                    # Woke early (timer granularity); wait out the remainder.
                    continue

            while heap and heap[0][0] <= self._utcnow():
                scheduled_at, _, job = heapq.heappop(heap)
                await self._fire(job)
                # Never re-arm at or before the boundary that just fired.
                self._arm(heap, job, max(self._utcnow(), scheduled_at))
                if stop_event.is_set():
                    break

        logger.info("Scheduler loop exited")

    def _arm(
        self,
        heap: List[Tuple[datetime, int, ScheduledJob]],
        job: ScheduledJob,
        after: datetime,
    ) -> None:
        # Schedules see local wall time; the heap orders by UTC.
        job.next_run = job.schedule.next_after(after.astimezone(self._location))
        heapq.heappush(heap, (job.next_run.astimezone(timezone.utc), next(self._seq), job))

    async def _fire(self, job: ScheduledJob) -> None:
        try:
            await job.func()
            job.runs += 1
        except Exception as e:
            job.failures += 1
            job.last_error = str(e)
            logger.error(
                f"Job '{job.name}' failed: {e}",
                extra={"job": job.name},
                exc_info=True,
            )
