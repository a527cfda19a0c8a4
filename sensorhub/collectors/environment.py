"""Temperature / pressure / humidity collector for BMx280-style sensors."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import List, Optional, Protocol

from sensorhub.collectors.base import SensorCollector
from sensorhub.exceptions import CollectorError
from sensorhub.models import SensorReading
from sensorhub.timing import wall_millis

logger = logging.getLogger(__name__)

SENSOR_TEMPERATURE = "temperature"
SENSOR_PRESSURE = "ambient_pressure"
SENSOR_HUMIDITY = "humidity"


@dataclass
class EnvironmentSample:
    temperature: float
    pressure: float
    humidity: Optional[float] = None


class EnvironmentDevice(Protocol):
    """Driver-side view of a combined environment sensor."""

    has_humidity: bool

    def read(self) -> EnvironmentSample:
        ...

    def close(self) -> None:
        ...


class EnvironmentCollector(SensorCollector):
    """Continuous collector; only the latest sample matters between publishes.

    The driver is opened lazily by ``activate`` through ``device_factory`` so a
    board that boots without the sensor attached keeps retrying every cycle.
    """

    def __init__(self, device_factory: Callable[[], EnvironmentDevice], *, label: str = "bmx280") -> None:
        self._device_factory = device_factory
        self._label = label
        self._device: EnvironmentDevice | None = None
        self._humidity_available = False
        # All sensors start enabled; call set_enabled before activate to change that.
        self._enabled = {
            SENSOR_TEMPERATURE: True,
            SENSOR_PRESSURE: True,
            SENSOR_HUMIDITY: True,
        }

    def activate(self) -> bool:
        if self._device is not None:
            return True
        try:
            device = self._device_factory()
        except Exception:
            logger.info("Could not initialize %s environment sensor", self._label, exc_info=True)
            return False
        self._device = device
        self._humidity_available = bool(getattr(device, "has_humidity", False))
        logger.debug("%s initialized (humidity=%s)", self._label, self._humidity_available)
        return True

    def set_enabled(self, sensor: str, enabled: bool) -> None:
        if sensor not in self._enabled:
            logger.warning("Unknown sensor %s for %s; ignoring request", sensor, self._label)
            return
        if sensor == SENSOR_HUMIDITY and enabled and self._device is not None and not self._humidity_available:
            logger.info("Humidity sensor not available on %s; ignoring request to enable it", self._label)
            return
        self._enabled[sensor] = bool(enabled)

    def is_enabled(self, sensor: str) -> bool:
        if sensor == SENSOR_HUMIDITY:
            return self._humidity_available and self._enabled[SENSOR_HUMIDITY]
        return bool(self._enabled.get(sensor, False))

    def available_sensors(self) -> List[str]:
        sensors = [SENSOR_TEMPERATURE, SENSOR_PRESSURE]
        if self._humidity_available:
            sensors.append(SENSOR_HUMIDITY)
        return sensors

    def collect_recent(self, output: List[SensorReading]) -> None:
        if self._device is None:
            return
        wanted = self.enabled_sensors()
        if not wanted:
            return
        try:
            sample = self._device.read()
        except Exception as exc:
            raise CollectorError(f"{self._label} read failed: {exc}") from exc
        # One bus read per cycle, so every value shares the same timestamp.
        now = wall_millis()
        values = {
            SENSOR_TEMPERATURE: sample.temperature,
            SENSOR_PRESSURE: sample.pressure,
            SENSOR_HUMIDITY: sample.humidity,
        }
        for sensor in wanted:
            value = values.get(sensor)
            if value is None:
                continue
            output.append(SensorReading(timestamp=now, sensor_name=sensor, value=float(value)))

    def close_quietly(self) -> None:
        device, self._device = self._device, None
        if device is None:
            return
        try:
            device.close()
        except Exception:
            logger.debug("Error closing %s", self._label, exc_info=True)
