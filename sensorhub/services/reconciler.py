"""Applies remote device configuration under a monotonically increasing version."""
from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol

from sensorhub.config import MAX_EVENTS_PER_HOUR
from sensorhub.models import DeviceConfig
from sensorhub.services.registry import CollectorRegistry

logger = logging.getLogger(__name__)


class Reschedulable(Protocol):
    telemetry_events_per_hour: int
    state_updates_per_hour: int

    def reschedule(self) -> None:
        ...


class ConfigReconciler:
    """Holds the current config version; it starts at 0 and lives only in memory."""

    def __init__(
        self,
        registry: CollectorRegistry,
        scheduler: Reschedulable,
        *,
        on_applied: Optional[Callable[[DeviceConfig], None]] = None,
    ) -> None:
        self._registry = registry
        self._scheduler = scheduler
        self.on_applied = on_applied
        self.current_version = 0
        self.last_config: DeviceConfig | None = None

    def apply(self, config: DeviceConfig) -> bool:
        if config.version <= self.current_version:
            logger.info(
                "Ignoring device config version %s; already at version %s",
                config.version,
                self.current_version,
            )
            return False
        logger.info(
            "Applying device config version %s (telemetry %s/h, state %s/h, sensors %s)",
            config.version,
            config.telemetry_events_per_hour,
            config.state_updates_per_hour,
            config.active_sensors,
        )
        self.current_version = config.version
        self.last_config = config
        self._apply_settings(config)
        listener = self.on_applied
        if listener is not None:
            try:
                listener(config)
            except Exception:
                logger.warning("Device config listener failed", exc_info=True)
        return True

    def restore(self, config: DeviceConfig) -> None:
        """Re-apply persisted rates and sensors at boot; the version stays at 0."""

        logger.info("Restoring persisted device settings from version %s", config.version)
        self.last_config = config
        self._apply_settings(config)

    def _apply_settings(self, config: DeviceConfig) -> None:
        self._scheduler.telemetry_events_per_hour = _bounded_rate(
            config.telemetry_events_per_hour, "telemetry-events-per-hour"
        )
        self._scheduler.state_updates_per_hour = _bounded_rate(config.state_updates_per_hour, "state-updates-per-hour")
        self._registry.apply_config(config.active_sensors)
        self._scheduler.reschedule()


def _bounded_rate(value: int, field: str) -> int:
    if value > MAX_EVENTS_PER_HOUR:
        logger.warning("%s=%s exceeds the supported maximum; using %s", field, value, MAX_EVENTS_PER_HOUR)
        return MAX_EVENTS_PER_HOUR
    return value
