"""Simulated hardware for bench runs without sensors attached."""
from __future__ import annotations

import logging
import math
import random
import threading
import time
from typing import Callable, Optional

from sensorhub.collectors.environment import EnvironmentSample

logger = logging.getLogger(__name__)


class SimulatedEnvironmentDevice:
    """Repeatable temperature/pressure/humidity values with a slow daily drift."""

    has_humidity = True

    def __init__(self, *, seed: Optional[int] = None, base_temperature: float = 21.0, base_pressure: float = 1013.25):
        self.random = random.Random(seed if seed is not None else 1)
        self._started = time.monotonic()
        self._base_temperature = base_temperature
        self._base_pressure = base_pressure
        self.closed = False

    def read(self) -> EnvironmentSample:
        elapsed = time.monotonic() - self._started
        phase = 2 * math.pi * (elapsed % 86400.0) / 86400.0
        temperature = self._base_temperature + 3.0 * math.sin(phase) + self.random.uniform(-0.2, 0.2)
        pressure = self._base_pressure + 4.0 * math.cos(phase) + self.random.uniform(-0.5, 0.5)
        humidity = max(0.0, min(100.0, 45.0 - 10.0 * math.sin(phase) + self.random.uniform(-1.0, 1.0)))
        return EnvironmentSample(
            temperature=round(temperature, 2),
            pressure=round(pressure, 2),
            humidity=round(humidity, 1),
        )

    def close(self) -> None:
        self.closed = True


class _EdgeCallback:
    def __init__(self, stop: threading.Event, thread: threading.Thread):
        self._stop = stop
        self._thread = thread

    def cancel(self) -> None:
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)


class SimulatedPi:
    """Stands in for a ``pigpio.pi`` handle, toggling the input at random intervals.

    Edges are delivered from a background thread, like pigpio's own callback thread.
    """

    connected = True

    def __init__(self, *, seed: Optional[int] = None, mean_interval_seconds: float = 45.0):
        self.random = random.Random(seed if seed is not None else 7)
        self._mean_interval = max(float(mean_interval_seconds), 0.01)
        self._callbacks: list[_EdgeCallback] = []

    def set_mode(self, gpio: int, mode: int) -> None:  # noqa: ARG002
        return

    def callback(self, gpio: int, edge: int, func: Callable[[int, int, int], None]) -> _EdgeCallback:  # noqa: ARG002
        stop = threading.Event()

        def run() -> None:
            level = 0
            while not stop.wait(timeout=self.random.expovariate(1.0 / self._mean_interval)):
                level ^= 1
                try:
                    func(gpio, level, int(time.monotonic() * 1_000_000) & 0xFFFFFFFF)
                except Exception:
                    logger.exception("Simulated edge callback failed")

        thread = threading.Thread(target=run, name=f"sim-gpio-{gpio}", daemon=True)
        handle = _EdgeCallback(stop, thread)
        self._callbacks.append(handle)
        thread.start()
        return handle

    def stop(self) -> None:
        for handle in self._callbacks:
            handle.cancel()
        self._callbacks.clear()
