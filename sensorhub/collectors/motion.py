"""PIR motion detector reported as on-change events.

Edges are captured by pigpio (DMA-backed sampling via pigpiod) and delivered on
pigpio's callback thread, never on the hub's event loop.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, List, Optional

from sensorhub.collectors.base import EventSensorCollector
from sensorhub.models import SensorReading

logger = logging.getLogger(__name__)

try:  # pragma: no cover - optional at runtime on Linux
    import pigpio  # type: ignore
except Exception:  # pragma: no cover
    pigpio = None  # type: ignore[assignment]

SENSOR_MOTION = "motion"
# pigpio constants, repeated so an injected pi factory works without the module.
PIGPIO_INPUT = 0
PIGPIO_EITHER_EDGE = 2


class MotionCollector(EventSensorCollector):
    """Event-driven collector for a single digital motion input."""

    def __init__(self, gpio: int, *, pi_factory: Optional[Callable[[], Any]] = None) -> None:
        super().__init__()
        self._gpio = int(gpio)
        self._pi_factory = pi_factory
        self._pi: Any = None
        self._callback: Any = None
        self._lock = threading.Lock()
        self._enabled = True
        self._last_reading = 0.0
        self._active = False

    def activate(self) -> bool:
        if self._active:
            return True
        factory = self._pi_factory
        if factory is None:
            if pigpio is None:
                logger.info("pigpio not available; motion detector on GPIO %s stays inactive", self._gpio)
                return False
            factory = pigpio.pi
        try:
            pi = factory()
            if not getattr(pi, "connected", False):
                raise RuntimeError("pigpiod not reachable (pi.connected=false)")
            pi.set_mode(self._gpio, PIGPIO_INPUT)
            self._callback = pi.callback(self._gpio, PIGPIO_EITHER_EDGE, self._on_edge)
            self._pi = pi
        except Exception:
            logger.warning("Could not initialize motion detector on GPIO %s", self._gpio, exc_info=True)
            return False
        self._active = True
        logger.debug("Initialized motion detector on GPIO %s", self._gpio)
        return True

    def set_enabled(self, sensor: str, enabled: bool) -> None:
        if sensor != SENSOR_MOTION:
            logger.warning("Don't know what sensor %s is; ignoring", sensor)
            return
        self._enabled = bool(enabled)

    def is_enabled(self, sensor: str) -> bool:
        return sensor == SENSOR_MOTION and self._enabled

    def available_sensors(self) -> List[str]:
        return [SENSOR_MOTION]

    def collect_recent(self, output: List[SensorReading]) -> None:
        if not self._active or not self._enabled:
            return
        with self._lock:
            value = self._last_reading
        output.append(SensorReading.now(SENSOR_MOTION, value))

    def close_quietly(self) -> None:
        self._active = False
        callback, self._callback = self._callback, None
        pi, self._pi = self._pi, None
        for closer in (getattr(callback, "cancel", None), getattr(pi, "stop", None)):
            if closer is None:
                continue
            try:
                closer()
            except Exception:
                logger.debug("Error releasing motion detector on GPIO %s", self._gpio, exc_info=True)

    def record_motion(self, detected: bool) -> None:
        """Record an edge and push it to the event sink."""

        value = 1.0 if detected else 0.0
        with self._lock:
            self._last_reading = value
        if not self._enabled:
            return
        logger.debug("On change %s: %s", SENSOR_MOTION, value)
        self._emit(SensorReading.now(SENSOR_MOTION, value))

    def _on_edge(self, gpio: int, level: int, _tick: int) -> None:
        # pigpio callback signature: (gpio, level, tick); level 2 is a watchdog timeout.
        if level not in (0, 1):
            return
        self.record_motion(level == 1)
