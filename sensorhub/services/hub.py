"""Sensor hub orchestrator: collectors, aggregation, publishing and remote config."""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from sensorhub import timing
from sensorhub.collectors import (
    EnvironmentCollector,
    MotionCollector,
    SensorCollector,
    SimulatedEnvironmentDevice,
    SimulatedPi,
)
from sensorhub.config import ConnectionParams, Settings
from sensorhub.exceptions import PayloadDecodeError
from sensorhub.models import DeviceConfig, DeviceState, SensorReading
from sensorhub.services.aggregator import ReadingAggregator
from sensorhub.services.broker import AiomqttBrokerClient
from sensorhub.services.connection import ConnectionManager
from sensorhub.services.credentials import JwtSigner, load_or_create_private_key
from sensorhub.services.payload import decode_device_config
from sensorhub.services.reconciler import ConfigReconciler
from sensorhub.services.registry import CollectorRegistry
from sensorhub.services.scheduler import Scheduler

logger = logging.getLogger(__name__)

SIMULATED_MOTION_GPIO = 17


class SensorHub:
    """Owns the registry, aggregator, connection manager, scheduler and reconciler.

    Event-driven collectors call back on their own threads; the hub buffers the
    reading and hands a single-reading publish to the loop. Those readings are
    also part of the next telemetry batch, so the broker may see them twice.
    """

    def __init__(
        self,
        registry: CollectorRegistry,
        connection: ConnectionManager,
        *,
        telemetry_events_per_hour: int,
        state_updates_per_hour: int,
        failures_before_backoff: int = 20,
        backoff_interval_seconds: float = 60.0,
        on_config_applied: Optional[Callable[[DeviceConfig], None]] = None,
        wall_clock: Callable[[], int] = timing.wall_millis,
        monotonic: Callable[[], int] = timing.monotonic_millis,
    ) -> None:
        self.registry = registry
        self.connection = connection
        self.aggregator = ReadingAggregator()
        self._lock = asyncio.Lock()
        self._wall_clock = wall_clock
        self.scheduler = Scheduler(
            connection,
            self._lock,
            telemetry_body=self.publish_telemetry_cycle,
            state_body=self.publish_state_cycle,
            telemetry_events_per_hour=telemetry_events_per_hour,
            state_updates_per_hour=state_updates_per_hour,
            failures_before_backoff=failures_before_backoff,
            backoff_interval_seconds=backoff_interval_seconds,
            wall_clock=wall_clock,
            monotonic=monotonic,
        )
        self.reconciler = ConfigReconciler(registry, self.scheduler, on_applied=on_config_applied)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: Set[asyncio.Task] = set()
        self._started = False
        self._stopped = False
        self.events_received = 0
        registry.event_listener = self._on_event
        connection.config_handler = self._on_config_message

    @property
    def running(self) -> bool:
        return self._started and not self._stopped

    def start(self, restore: Optional[DeviceConfig] = None) -> None:
        """Activate collectors, re-apply ``restore`` if given, then start both cadences.

        Restoring happens after activation so sensors a device only reports once
        opened (humidity on a BME280) are enabled or disabled like the rest.
        """

        if self._started or self._stopped:
            return
        self._loop = asyncio.get_running_loop()
        self._started = True
        active = self.registry.activate_all()
        if restore is not None:
            self.reconciler.restore(restore)
        logger.info(
            "Sensor hub starting for %s with %s/%s collectors active",
            self.connection.params.device_id,
            active,
            len(self.registry),
        )
        self.scheduler.start()

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        try:
            await self.scheduler.stop()
            pending = list(self._pending)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            self._pending.clear()
        finally:
            self.registry.close_all()
            await self.connection.disconnect()
        logger.info("Sensor hub stopped")

    async def publish_telemetry_cycle(self) -> None:
        readings: List[SensorReading] = []
        self.registry.collect_all(readings)
        self.aggregator.record_continuous(readings)
        batch = self.aggregator.assemble_telemetry_batch()
        if not batch:
            logger.debug("No readings to publish this cycle")
            return
        await self.connection.publish_telemetry(batch)

    async def publish_state_cycle(self) -> None:
        await self.connection.publish_state(self.device_state())

    def device_state(self) -> DeviceState:
        return DeviceState(
            version=self.reconciler.current_version,
            telemetry_events_per_hour=self.scheduler.telemetry_events_per_hour,
            state_updates_per_hour=self.scheduler.state_updates_per_hour,
            sensors=self.registry.available_sensors(),
            active_sensors=self.registry.enabled_sensors(),
        )

    def _on_event(self, reading: SensorReading) -> None:
        # Runs on the collector's callback thread.
        self.events_received += 1
        self.aggregator.record_event(reading)
        loop = self._loop
        if loop is None or self._stopped:
            return
        try:
            loop.call_soon_threadsafe(self._spawn_event_publish, reading)
        except RuntimeError:
            logger.debug("Event loop closed; %s stays buffered", reading)

    def _spawn_event_publish(self, reading: SensorReading) -> None:
        if self._stopped:
            return
        self._track(asyncio.create_task(self._publish_event(reading), name="sensorhub-event"))

    async def _publish_event(self, reading: SensorReading) -> None:
        async with self._lock:
            if not timing.can_execute("event", self.connection.is_ready(), clock_ms=self._wall_clock()):
                return
            try:
                await self.connection.publish_telemetry([reading])
            except Exception:
                logger.warning("Out-of-band publish of %s failed", reading, exc_info=True)

    def _on_config_message(self, payload: bytes) -> None:
        if self._stopped:
            return
        self._track(asyncio.create_task(self._apply_config_payload(payload), name="sensorhub-config"))

    async def _apply_config_payload(self, payload: bytes) -> None:
        try:
            config = decode_device_config(payload)
        except PayloadDecodeError as exc:
            logger.warning("Dropping malformed device config: %s", exc)
            return
        async with self._lock:
            try:
                self.reconciler.apply(config)
            except Exception:
                logger.exception("Failed to apply device config version %s", config.version)

    def _track(self, task: asyncio.Task) -> None:
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def snapshot(self) -> Dict[str, Any]:
        state = self.device_state()
        return {
            "running": self.running,
            "device_id": self.connection.params.device_id,
            "config_version": state.version,
            "telemetry_events_per_hour": state.telemetry_events_per_hour,
            "state_updates_per_hour": state.state_updates_per_hour,
            "sensors": state.sensors,
            "active_sensors": state.active_sensors,
            "events_received": self.events_received,
            "pending": self.aggregator.pending_counts(),
            "connection": self.connection.snapshot(),
            "scheduler": self.scheduler.snapshot(),
        }


def build_collectors(settings: Settings) -> List[SensorCollector]:
    collectors: List[SensorCollector] = []
    if settings.simulate_sensors:
        seed = settings.simulation_seed
        collectors.append(
            EnvironmentCollector(lambda: SimulatedEnvironmentDevice(seed=seed), label="simulated-bmx280")
        )
        gpio = settings.motion_gpio if settings.motion_gpio is not None else SIMULATED_MOTION_GPIO
        collectors.append(MotionCollector(gpio, pi_factory=lambda: SimulatedPi(seed=seed)))
        return collectors
    if settings.motion_gpio is not None:
        collectors.append(MotionCollector(settings.motion_gpio))
    return collectors


def create_hub(
    settings: Settings,
    params: ConnectionParams,
    *,
    on_config_applied: Optional[Callable[[DeviceConfig], None]] = None,
) -> SensorHub:
    """Wire a hub for ``params`` from settings: device key, MQTT client and collectors."""

    private_key = load_or_create_private_key(
        Path(settings.private_key_path),
        params.key_algorithm,
        certificate_path=Path(settings.certificate_path) if settings.certificate_path else None,
    )
    signer = JwtSigner(
        private_key,
        params.key_algorithm,
        lifetime=dt.timedelta(minutes=settings.token_lifetime_minutes),
    )
    broker = AiomqttBrokerClient(
        keepalive=settings.mqtt_keepalive_seconds,
        timeout=settings.mqtt_connect_timeout_seconds,
    )
    connection = ConnectionManager(params, broker, signer, endpoint=settings.broker_url)
    registry = CollectorRegistry()
    for collector in build_collectors(settings):
        registry.register(collector)
    return SensorHub(
        registry,
        connection,
        telemetry_events_per_hour=settings.telemetry_events_per_hour,
        state_updates_per_hour=settings.state_updates_per_hour,
        failures_before_backoff=settings.connect_failures_before_backoff,
        backoff_interval_seconds=settings.backoff_interval_seconds,
        on_config_applied=on_config_applied,
    )
