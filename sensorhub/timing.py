"""Clock helpers shared by the scheduler and collectors."""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

MILLIS_PER_HOUR = 60 * 60 * 1000

# Boards can boot with a clock far in the past until network time arrives; anything
# earlier than this instant is treated as unsynchronised.
INITIAL_VALID_TIMESTAMP_MS = int(datetime(2016, 2, 1, tzinfo=timezone.utc).timestamp() * 1000)


def wall_millis() -> int:
    return int(time.time() * 1000)


def monotonic_millis() -> int:
    return int(time.monotonic() * 1000)


def period_millis(events_per_hour: int) -> int:
    return max(MILLIS_PER_HOUR // max(int(events_per_hour), 1), 1)


def calculate_next_run(events_per_hour: int, last_run: int) -> int:
    return last_run + period_millis(events_per_hour)


def is_clock_valid(clock_ms: int) -> bool:
    return clock_ms >= INITIAL_VALID_TIMESTAMP_MS


def can_execute(loop_type: str, is_ready: bool, clock_ms: int | None = None) -> bool:
    """Readiness gate: a sane wall clock and a connected session."""

    clock_ms = wall_millis() if clock_ms is None else clock_ms
    if not is_clock_valid(clock_ms):
        logger.debug("%s ignored because the device clock is invalid; set the date/time", loop_type)
        return False
    if not is_ready:
        logger.debug("%s ignored because the broker session is not connected", loop_type)
        return False
    return True
