"""Sensor collectors: the hardware-facing side of the hub."""
from __future__ import annotations

from .base import CollectorKind, EventSensorCollector, EventSink, SensorCollector
from .environment import EnvironmentCollector, EnvironmentDevice, EnvironmentSample
from .motion import MotionCollector
from .simulated import SimulatedEnvironmentDevice, SimulatedPi

__all__ = [
    "CollectorKind",
    "EventSensorCollector",
    "EventSink",
    "SensorCollector",
    "EnvironmentCollector",
    "EnvironmentDevice",
    "EnvironmentSample",
    "MotionCollector",
    "SimulatedEnvironmentDevice",
    "SimulatedPi",
]
