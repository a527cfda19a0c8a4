"""Registry of sensor collectors owned by the hub."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from sensorhub.collectors.base import CollectorKind, EventSink, SensorCollector
from sensorhub.models import SensorReading

logger = logging.getLogger(__name__)


class CollectorRegistry:
    """Ordered set of collectors with per-collector failure isolation.

    Event-driven collectors are wired to the registry itself as their sink; the
    registry forwards each event to ``event_listener`` (normally the hub).
    """

    def __init__(self, event_listener: Optional[EventSink] = None) -> None:
        self._collectors: List[SensorCollector] = []
        self.event_listener = event_listener

    def __len__(self) -> int:
        return len(self._collectors)

    @property
    def collectors(self) -> List[SensorCollector]:
        return list(self._collectors)

    def register(self, collector: SensorCollector) -> None:
        if collector in self._collectors:
            return
        self._collectors.append(collector)
        if collector.kind is CollectorKind.EVENT_DRIVEN:
            collector.set_event_sink(self._on_event)
        logger.debug("Registered %s collector %s", collector.kind.value, type(collector).__name__)

    def _on_event(self, reading: SensorReading) -> None:
        listener = self.event_listener
        if listener is None:
            logger.debug("No listener for event %s", reading)
            return
        listener(reading)

    def activate_all(self) -> int:
        """Try to open every device up front so event-driven sensors start reporting."""

        active = 0
        for collector in self._collectors:
            try:
                if collector.activate():
                    active += 1
            except Exception:
                logger.warning("Collector %s failed to activate", type(collector).__name__, exc_info=True)
        return active

    def collect_all(self, output: List[SensorReading]) -> None:
        """Activate and poll every collector; a failing collector only loses this cycle."""

        for collector in self._collectors:
            try:
                if not collector.activate():
                    continue
                collector.collect_recent(output)
            except Exception:
                logger.warning("Collector %s failed; skipping this cycle", type(collector).__name__, exc_info=True)

    def apply_config(self, active_sensors: Iterable[str]) -> None:
        active = set(active_sensors)
        known: set[str] = set()
        for collector in self._collectors:
            for sensor in collector.available_sensors():
                known.add(sensor)
                collector.set_enabled(sensor, sensor in active)
        for sensor in sorted(active - known):
            logger.warning("Unknown sensor %s in active sensors; ignoring", sensor)

    def available_sensors(self) -> List[str]:
        return [sensor for collector in self._collectors for sensor in collector.available_sensors()]

    def enabled_sensors(self) -> List[str]:
        return [sensor for collector in self._collectors for sensor in collector.enabled_sensors()]

    def close_all(self) -> None:
        for collector in self._collectors:
            try:
                collector.close_quietly()
            except Exception:
                logger.debug("Error closing %s", type(collector).__name__, exc_info=True)
