"""Sliding-window admission control with peak-rate tracking.

The limiter keeps the arrival times of recorded events in a rolling window
and decides whether new work may proceed. Admission uses a hysteresis band:
the limiter locks once the window holds ``rate_limit + rate_buffer`` events
and only unlocks after the window drains below ``rate_limit``. This avoids
flapping between admit and deny on every event once the limit is reached.

Admission (``allow``) and recording (``add``) are separate calls. The usual
protocol is to call ``allow()``, do the work only when admitted, and then
call ``add()``.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Deque, Tuple

from shortener.app.core.config import Settings


@dataclass(frozen=True)
class LimiterConfig:
    """Immutable limiter configuration."""
    rate_limit: int
    rate_buffer: int
    time_frame: timedelta

    def __post_init__(self) -> None:
        if self.rate_limit < 1:
            raise ValueError("rate_limit must be at least 1")
        if self.rate_buffer < 0:
            raise ValueError("rate_buffer must not be negative")
        if self.time_frame <= timedelta(0):
            raise ValueError("time_frame must be positive")

    @property
    def lock_threshold(self) -> int:
        """Window count at which the limiter locks."""
        return self.rate_limit + self.rate_buffer

    @classmethod
    def from_settings(cls, app_settings: Settings) -> "LimiterConfig":
        return cls(
            rate_limit=app_settings.rate_limit,
            rate_buffer=app_settings.rate_buffer,
            time_frame=timedelta(seconds=app_settings.rate_time_frame_seconds),
        )


class SlidingWindowLimiter:
    """Single-process sliding-window limiter.

    One instance is shared by the admission middleware and the scheduled
    jobs. All state lives behind one lock and no operation does I/O while
    holding it, so every call is a short in-memory critical section.

    Usage:
        limiter = SlidingWindowLimiter(LimiterConfig(100, 10, timedelta(minutes=1)))

        rate, admitted = limiter.allow()
        if admitted:
            do_work()
            limiter.add()
    """

    def __init__(
        self,
        config: LimiterConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the limiter.

        Args:
            config: Limits and window length
            clock: Monotonic time source in seconds (injectable for tests)
        """
        self._config = config
        self._clock = clock
        self._window_seconds = config.time_frame.total_seconds()
        # Sized for the lock threshold; the deque itself is unbounded
        self.capacity_hint = config.lock_threshold
        self._events: Deque[float] = deque()
        self._locked = False
        self._peak_rate = 0
        self._lock = threading.Lock()

    @property
    def config(self) -> LimiterConfig:
        return self._config

    @property
    def locked(self) -> bool:
        with self._lock:
            return self._locked

    def allow(self) -> Tuple[int, bool]:
        """Decide whether the next unit of work may proceed.

        Does not record the event.

        Returns:
            Tuple of (current window count, admitted)
        """
        with self._lock:
            current = self._prune(self._clock())

            if not self._locked and current >= self._config.lock_threshold:
                self._locked = True
            elif self._locked and current < self._config.rate_limit:
                self._locked = False

            return current, not self._locked

    def add(self) -> None:
        """Record one event at the current time and update the peak."""
        with self._lock:
            now = self._clock()
            self._events.append(now)
            current = self._prune(now)
            if current > self._peak_rate:
                self._peak_rate = current

    def get_rate(self) -> int:
        """Return the number of events currently inside the window."""
        with self._lock:
            return self._prune(self._clock())

    def get_peak_rate(self) -> int:
        with self._lock:
            return self._peak_rate

    def reset_peak_rate(self) -> int:
        """Zero the peak and return the value that was cleared."""
        with self._lock:
            last_peak_rate = self._peak_rate
            self._peak_rate = 0
            return last_peak_rate

    def set_peak_rate(self, value: int) -> None:
        """Seed the peak, typically from persisted state at startup."""
        with self._lock:
            self._peak_rate = max(0, int(value))

    def get_limit(self) -> timedelta:
        """Return the configured window length."""
        return self._config.time_frame

    def _prune(self, now: float) -> int:
        # Events are appended in clock order, so expired ones form a prefix.
        cutoff = now - self._window_seconds
        events = self._events
        while events and events[0] < cutoff:
            events.popleft()
        return len(events)
