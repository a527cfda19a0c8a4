"""Thread-safe holding area for readings between publish cycles.

Continuous sensors only keep their latest value. Event-driven sensors keep a
short, time-ordered history so bursts between two telemetry cycles survive.
"""
from __future__ import annotations

import bisect
import threading
from collections import OrderedDict
from typing import Dict, List

from sensorhub.models import SensorReading

ON_CHANGE_BUFFER_CAPACITY = 10


class MostRecentMap:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._readings: "OrderedDict[str, SensorReading]" = OrderedDict()

    def put(self, reading: SensorReading) -> None:
        with self._lock:
            self._readings[reading.sensor_name] = reading

    def drain(self) -> List[SensorReading]:
        with self._lock:
            readings = list(self._readings.values())
            self._readings.clear()
        return readings

    def __len__(self) -> int:
        with self._lock:
            return len(self._readings)


class OnChangeBuffer:
    """Bounded per-sensor history sorted by timestamp; the oldest entry is evicted first."""

    def __init__(self, capacity: int = ON_CHANGE_BUFFER_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._lock = threading.Lock()
        self._readings: List[SensorReading] = []

    def add(self, reading: SensorReading) -> None:
        with self._lock:
            keys = [item.timestamp for item in self._readings]
            self._readings.insert(bisect.bisect_right(keys, reading.timestamp), reading)
            overflow = len(self._readings) - self.capacity
            if overflow > 0:
                del self._readings[:overflow]

    def drain(self) -> List[SensorReading]:
        with self._lock:
            readings = self._readings
            self._readings = []
        return readings

    def __len__(self) -> int:
        with self._lock:
            return len(self._readings)


class ReadingAggregator:
    def __init__(self, on_change_capacity: int = ON_CHANGE_BUFFER_CAPACITY) -> None:
        self.most_recent = MostRecentMap()
        self._on_change_capacity = on_change_capacity
        self._buffers: Dict[str, OnChangeBuffer] = {}
        self._buffers_lock = threading.Lock()

    def record_continuous(self, readings: List[SensorReading]) -> None:
        for reading in readings:
            self.most_recent.put(reading)

    def record_event(self, reading: SensorReading) -> None:
        with self._buffers_lock:
            buffer = self._buffers.get(reading.sensor_name)
            if buffer is None:
                buffer = OnChangeBuffer(self._on_change_capacity)
                self._buffers[reading.sensor_name] = buffer
        buffer.add(reading)

    def snapshot_continuous(self) -> List[SensorReading]:
        return self.most_recent.drain()

    def snapshot_on_change(self) -> List[SensorReading]:
        with self._buffers_lock:
            buffers = list(self._buffers.values())
        readings: List[SensorReading] = []
        for buffer in buffers:
            readings.extend(buffer.drain())
        return readings

    def assemble_telemetry_batch(self) -> List[SensorReading]:
        return self.snapshot_continuous() + self.snapshot_on_change()

    def pending_counts(self) -> Dict[str, int]:
        with self._buffers_lock:
            buffered = {name: len(buffer) for name, buffer in self._buffers.items()}
        return {"continuous": len(self.most_recent), **{f"on_change.{name}": count for name, count in buffered.items()}}
