
# Scheduler: drives rounds on a fixed cadence.

#   IDLE --start()--> RUNNING --stop()--> IDLE
#
# start() runs a round right away and then one every `interval` seconds.
# Ticks are anchored to the start time, not to the end of the previous round,
# so slow rounds do not make the schedule drift.
#
# refresh_now() runs an extra round in between without moving the next tick.
#
# At most one round is in flight: a tick that comes due while a round (or a
# manual refresh) is still running waits for it to finish and then fires.
# If several ticks were missed during a very long round, only one fires.

import asyncio
import enum
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from oce_status.models import utcnow

log = logging.getLogger(__name__)


class SchedulerState(str, enum.Enum):
    IDLE    = "idle"
    RUNNING = "running"


class Scheduler:

    def __init__(self, round_fn: Callable[[], Awaitable[Any]]) -> None:
        self._round_fn = round_fn
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._cancelled: set[asyncio.Task] = set()   # stopped, still unwinding
        self._interval: float | None = None
        self._next_due: float | None = None          # loop time of the next tick

    @property
    def state(self) -> SchedulerState:
        if self._task is not None and not self._task.done():
            return SchedulerState.RUNNING
        return SchedulerState.IDLE

    @property
    def is_running(self) -> bool:
        return self.state is SchedulerState.RUNNING

    @property
    def round_in_flight(self) -> bool:
        return self._lock.locked()

    @property
    def seconds_until_next_run(self) -> float | None:
        """Time left before the next scheduled tick; None when idle."""
        if not self.is_running or self._next_due is None:
            return None
        return max(0.0, self._next_due - asyncio.get_running_loop().time())

    @property
    def next_run_at(self) -> datetime | None:
        remaining = self.seconds_until_next_run
        if remaining is None:
            return None
        return utcnow() + timedelta(seconds=remaining)

    @property
    def interval(self) -> float | None:
        return self._interval

    def start(self, interval: float) -> None:
        """Begin polling every `interval` seconds. No-op when already running."""
        if self.is_running:
            log.debug("Scheduler already running; start() ignored.")
            return
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval!r}")

        self._interval = interval
        self._task = asyncio.create_task(self._run_forever(interval), name="scheduler")
        log.info("Scheduler started, polling every %ss.", interval)

    def stop(self) -> None:
        """Cancel the pending interval. Safe to call when idle."""
        task, self._task = self._task, None
        self._next_due = None
        if task is None or task.done():
            return
        task.cancel()
        self._cancelled.add(task)
        log.info("Scheduler stopped.")

    async def wait_closed(self) -> None:
        """Wait for stopped loops to finish unwinding."""
        pending, self._cancelled = self._cancelled, set()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def refresh_now(self) -> Any:
        """Run one round outside the cadence. The next scheduled tick is unaffected."""
        log.info("Manual refresh requested.")
        return await self._run_round()

    async def _run_round(self) -> Any:
        async with self._lock:
            return await self._round_fn()

    async def _run_forever(self, interval: float) -> None:
        loop = asyncio.get_running_loop()
        next_due = loop.time()
        self._next_due = next_due

        while True:
            try:
                await self._run_round()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.exception("Unexpected error during scheduled round: %s", exc)

            next_due += interval
            now = loop.time()
            if next_due < now:
                # the tick that came due mid-round fires now; older ones are dropped
                skipped = int((now - next_due) // interval)
                if skipped:
                    log.warning("Round overran the interval; dropping %d tick(s).", skipped)
                next_due += skipped * interval
            self._next_due = next_due
            await asyncio.sleep(max(0.0, next_due - now))
