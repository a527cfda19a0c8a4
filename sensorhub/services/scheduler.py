"""Recurring telemetry and state tasks driven by the asyncio loop."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from sensorhub import timing
from sensorhub.config import DEFAULT_STATE_UPDATES_PER_HOUR, DEFAULT_TELEMETRY_EVENTS_PER_HOUR

logger = logging.getLogger(__name__)

TaskBody = Callable[[], Awaitable[None]]


class Connectable(Protocol):
    async def ensure_connected(self) -> bool:
        ...

    def is_ready(self) -> bool:
        ...


class RecurringTask:
    """Bookkeeping for one cadence. ``last_run`` is on the monotonic clock."""

    def __init__(self, name: str, body: TaskBody, events_per_hour: int) -> None:
        self.name = name
        self.body = body
        self.events_per_hour = events_per_hour
        self.last_run: Optional[int] = None
        self.consecutive_failures = 0
        self.runs = 0
        self.handle: asyncio.Task | None = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "events_per_hour": self.events_per_hour,
            "period_ms": timing.period_millis(self.events_per_hour),
            "last_run_monotonic_ms": self.last_run,
            "runs": self.runs,
            "consecutive_failures": self.consecutive_failures,
        }


class Scheduler:
    """Fires the telemetry and state bodies on their own cadences.

    Every firing, config application and out-of-band publish holds ``lock``,
    so nothing on the loop touches the session or collectors concurrently.
    """

    def __init__(
        self,
        connection: Connectable,
        lock: asyncio.Lock,
        *,
        telemetry_body: TaskBody,
        state_body: TaskBody,
        telemetry_events_per_hour: int = DEFAULT_TELEMETRY_EVENTS_PER_HOUR,
        state_updates_per_hour: int = DEFAULT_STATE_UPDATES_PER_HOUR,
        failures_before_backoff: int = 20,
        backoff_interval_seconds: float = 60.0,
        wall_clock: Callable[[], int] = timing.wall_millis,
        monotonic: Callable[[], int] = timing.monotonic_millis,
    ) -> None:
        self._connection = connection
        self._lock = lock
        self.telemetry = RecurringTask("telemetry", telemetry_body, telemetry_events_per_hour)
        self.state = RecurringTask("state", state_body, state_updates_per_hour)
        self.failures_before_backoff = max(int(failures_before_backoff), 0)
        self.backoff_millis = int(backoff_interval_seconds * 1000)
        self._wall_clock = wall_clock
        self._monotonic = monotonic
        self._running = False

    @property
    def tasks(self) -> tuple[RecurringTask, RecurringTask]:
        return (self.telemetry, self.state)

    @property
    def telemetry_events_per_hour(self) -> int:
        return self.telemetry.events_per_hour

    @telemetry_events_per_hour.setter
    def telemetry_events_per_hour(self, value: int) -> None:
        self.telemetry.events_per_hour = int(value)

    @property
    def state_updates_per_hour(self) -> int:
        return self.state.events_per_hour

    @state_updates_per_hour.setter
    def state_updates_per_hour(self, value: int) -> None:
        self.state.events_per_hour = int(value)

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        for task in self.tasks:
            self._spawn(task)

    async def stop(self) -> None:
        self._running = False
        handles = [task.handle for task in self.tasks if task.handle is not None]
        for task in self.tasks:
            task.handle = None
        current = asyncio.current_task()
        for handle in handles:
            if handle is not current:
                handle.cancel()
        for handle in handles:
            if handle is current:
                continue
            try:
                await handle
            except asyncio.CancelledError:
                pass

    def reschedule(self) -> None:
        """Cancel both tasks and restart them from their last run at the current rates."""

        if not self._running:
            return
        current = asyncio.current_task()
        for task in self.tasks:
            handle = task.handle
            if handle is not None and handle is not current:
                handle.cancel()
            self._spawn(task)
        logger.debug(
            "Rescheduled telemetry at %s/h and state at %s/h",
            self.telemetry.events_per_hour,
            self.state.events_per_hour,
        )

    def _spawn(self, task: RecurringTask) -> None:
        task.handle = asyncio.create_task(self._run(task), name=f"sensorhub-{task.name}")

    async def _run(self, task: RecurringTask) -> None:
        while True:
            # Yield even when already due; a busy cadence must not starve the loop.
            await asyncio.sleep(self.next_delay_millis(task) / 1000)
            if task.handle is not asyncio.current_task():
                # Superseded by a reschedule that happened during our own firing.
                return
            await self.fire(task)

    def next_delay_millis(self, task: RecurringTask) -> int:
        if task.last_run is None:
            return 0
        next_run = timing.calculate_next_run(task.events_per_hour, task.last_run)
        if self.failures_before_backoff and task.consecutive_failures >= self.failures_before_backoff:
            next_run = max(next_run, task.last_run + self.backoff_millis)
        return max(next_run - self._monotonic(), 0)

    async def fire(self, task: RecurringTask) -> bool:
        """Run one firing of ``task``. Returns True when its body ran without error."""

        async with self._lock:
            task.last_run = self._monotonic()
            task.runs += 1
            try:
                connected = await self._connection.ensure_connected()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Unexpected error while connecting for %s", task.name)
                connected = False
            clock_ms = self._wall_clock()
            if not timing.can_execute(task.name, connected and self._connection.is_ready(), clock_ms=clock_ms):
                if timing.is_clock_valid(clock_ms):
                    self._record_failure(task)
                return False
            try:
                await task.body()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s task failed", task.name.capitalize())
                self._record_failure(task)
                return False
            if task.consecutive_failures:
                logger.info("%s task recovered after %s failed cycles", task.name.capitalize(), task.consecutive_failures)
            task.consecutive_failures = 0
            return True

    def _record_failure(self, task: RecurringTask) -> None:
        task.consecutive_failures += 1
        if self.failures_before_backoff and task.consecutive_failures == self.failures_before_backoff:
            logger.warning(
                "%s task failed %s times in a row; slowing to one attempt every %ss",
                task.name.capitalize(),
                task.consecutive_failures,
                max(timing.period_millis(task.events_per_hour), self.backoff_millis) // 1000,
            )

    def snapshot(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "telemetry": self.telemetry.snapshot(),
            "state": self.state.snapshot(),
        }
