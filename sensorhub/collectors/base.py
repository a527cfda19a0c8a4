"""Capability contract shared by all sensor collectors."""
from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from typing import List, Optional

from sensorhub.models import SensorReading

logger = logging.getLogger(__name__)

EventSink = Callable[[SensorReading], None]


class CollectorKind(str, enum.Enum):
    CONTINUOUS = "continuous"
    EVENT_DRIVEN = "event_driven"


class SensorCollector:
    """Uniform interface over one physical device exposing one or more sensors.

    Continuous collectors are polled once per telemetry cycle. Event-driven
    collectors additionally push readings through an event sink as they happen,
    from whatever thread the hardware callback runs on.
    """

    kind: CollectorKind = CollectorKind.CONTINUOUS

    def activate(self) -> bool:
        """Open the device if needed. Returns True once the device is usable."""
        raise NotImplementedError

    def set_enabled(self, sensor: str, enabled: bool) -> None:
        raise NotImplementedError

    def is_enabled(self, sensor: str) -> bool:
        raise NotImplementedError

    def available_sensors(self) -> List[str]:
        raise NotImplementedError

    def enabled_sensors(self) -> List[str]:
        return [sensor for sensor in self.available_sensors() if self.is_enabled(sensor)]

    def collect_recent(self, output: List[SensorReading]) -> None:
        raise NotImplementedError

    def close_quietly(self) -> None:
        raise NotImplementedError

    def set_event_sink(self, sink: Optional[EventSink]) -> None:
        raise TypeError(f"{type(self).__name__} does not produce events")


class EventSensorCollector(SensorCollector):
    """Collector that reports discrete events when they happen (e.g. a motion edge)."""

    kind = CollectorKind.EVENT_DRIVEN

    def __init__(self) -> None:
        self._event_sink: Optional[EventSink] = None

    def set_event_sink(self, sink: Optional[EventSink]) -> None:
        self._event_sink = sink

    def _emit(self, reading: SensorReading) -> None:
        sink = self._event_sink
        if sink is None:
            logger.debug("Dropping %s: no event sink installed", reading)
            return
        sink(reading)
