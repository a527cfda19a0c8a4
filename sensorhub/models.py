"""Data objects exchanged between collectors, the hub and the broker."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

from sensorhub import timing


@dataclass(frozen=True)
class SensorReading:
    """A single sample. Timestamps are wall-clock epoch milliseconds."""

    timestamp: int
    sensor_name: str
    value: float

    @classmethod
    def now(cls, sensor_name: str, value: float) -> "SensorReading":
        return cls(timestamp=timing.wall_millis(), sensor_name=sensor_name, value=float(value))

    def __str__(self) -> str:
        return f"{self.sensor_name} [{self.timestamp}] {self.value}"


class DeviceConfig(BaseModel):
    """Cloud to device configuration, fenced by ``version``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    version: StrictInt
    telemetry_events_per_hour: StrictInt = Field(alias="telemetry-events-per-hour", gt=0)
    state_updates_per_hour: StrictInt = Field(alias="state-updates-per-hour", gt=0)
    active_sensors: List[StrictStr] = Field(alias="active-sensors")


@dataclass
class DeviceState:
    """Self-reported configuration published on the state cadence."""

    version: int
    telemetry_events_per_hour: int
    state_updates_per_hour: int
    sensors: List[str] = field(default_factory=list)
    active_sensors: List[str] = field(default_factory=list)
