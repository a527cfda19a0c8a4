from __future__ import annotations

import threading

import pytest

from sensorhub import timing
from sensorhub.collectors import (
    CollectorKind,
    EnvironmentCollector,
    EnvironmentSample,
    MotionCollector,
    SimulatedEnvironmentDevice,
    SimulatedPi,
)
from sensorhub.collectors import environment
from sensorhub.exceptions import CollectorError
from sensorhub.models import SensorReading


class _FakeCallback:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class _FakePi:
    def __init__(self, connected: bool = True) -> None:
        self.connected = connected
        self.modes = {}
        self.callbacks = []
        self.stopped = False

    def set_mode(self, gpio, mode):
        self.modes[gpio] = mode

    def callback(self, gpio, edge, func):
        handle = _FakeCallback()
        self.callbacks.append((gpio, edge, func, handle))
        return handle

    def stop(self):
        self.stopped = True


class _BarometerOnly:
    has_humidity = False

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.closed = False

    def read(self) -> EnvironmentSample:
        if self.fail:
            raise OSError("i2c timeout")
        return EnvironmentSample(temperature=19.25, pressure=1009.5)

    def close(self) -> None:
        self.closed = True


def test_environment_collector_reads_all_sensors_with_one_timestamp():
    collector = EnvironmentCollector(lambda: SimulatedEnvironmentDevice(seed=42))
    output = []

    assert collector.kind is CollectorKind.CONTINUOUS
    assert collector.activate() is True
    collector.collect_recent(output)

    assert [r.sensor_name for r in output] == ["temperature", "ambient_pressure", "humidity"]
    assert len({r.timestamp for r in output}) == 1
    assert 10.0 < output[0].value < 30.0


def test_readings_are_stamped_from_the_shared_wall_clock(monkeypatch):
    monkeypatch.setattr(environment, "wall_millis", lambda: 1_700_000_000_000)
    monkeypatch.setattr(timing, "wall_millis", lambda: 1_700_000_000_500)
    collector = EnvironmentCollector(lambda: SimulatedEnvironmentDevice(seed=42))
    output = []

    collector.activate()
    collector.collect_recent(output)

    assert {r.timestamp for r in output} == {1_700_000_000_000}
    assert SensorReading.now("motion", 1).timestamp == 1_700_000_000_500


def test_environment_collector_without_humidity():
    device = _BarometerOnly()
    collector = EnvironmentCollector(lambda: device)
    collector.activate()
    collector.set_enabled("humidity", True)
    collector.set_enabled("ambient_pressure", False)
    output = []

    collector.collect_recent(output)

    assert collector.available_sensors() == ["temperature", "ambient_pressure"]
    assert [(r.sensor_name, r.value) for r in output] == [("temperature", 19.25)]
    collector.close_quietly()
    assert device.closed is True


def test_environment_collector_activation_failure_is_retryable():
    attempts = []

    def factory():
        attempts.append(1)
        if len(attempts) == 1:
            raise OSError("no device at 0x76")
        return _BarometerOnly()

    collector = EnvironmentCollector(factory)

    assert collector.activate() is False
    assert collector.activate() is True
    assert len(attempts) == 2


def test_environment_read_failure_raises_collector_error():
    collector = EnvironmentCollector(lambda: _BarometerOnly(fail=True))
    collector.activate()

    with pytest.raises(CollectorError):
        collector.collect_recent([])


def test_continuous_collector_has_no_event_sink():
    collector = EnvironmentCollector(lambda: _BarometerOnly())

    with pytest.raises(TypeError):
        collector.set_event_sink(lambda reading: None)


def test_motion_collector_reports_edges():
    pi = _FakePi()
    collector = MotionCollector(17, pi_factory=lambda: pi)
    events = []
    collector.set_event_sink(events.append)

    assert collector.kind is CollectorKind.EVENT_DRIVEN
    assert collector.activate() is True
    gpio, edge, func, handle = pi.callbacks[0]
    assert (gpio, edge, pi.modes[17]) == (17, 2, 0)

    func(17, 1, 100)
    func(17, 2, 200)
    func(17, 0, 300)
    output = []
    collector.collect_recent(output)

    assert [e.value for e in events] == [1.0, 0.0]
    assert [(r.sensor_name, r.value) for r in output] == [("motion", 0.0)]

    collector.close_quietly()
    assert handle.cancelled and pi.stopped


def test_disabled_motion_collector_stays_quiet():
    collector = MotionCollector(17, pi_factory=_FakePi)
    events = []
    collector.set_event_sink(events.append)
    collector.activate()
    collector.set_enabled("motion", False)

    collector.record_motion(True)
    output = []
    collector.collect_recent(output)

    assert events == []
    assert output == []
    assert collector.enabled_sensors() == []


def test_motion_collector_needs_a_connected_daemon():
    collector = MotionCollector(4, pi_factory=lambda: _FakePi(connected=False))

    assert collector.activate() is False


def test_simulated_pi_delivers_edges_from_its_own_thread():
    pi = SimulatedPi(seed=1, mean_interval_seconds=0.01)
    collector = MotionCollector(22, pi_factory=lambda: pi)
    seen = threading.Event()
    threads = []

    def sink(reading):
        threads.append(threading.current_thread().name)
        seen.set()

    collector.set_event_sink(sink)
    assert collector.activate() is True

    assert seen.wait(timeout=5.0)
    collector.close_quietly()
    assert threads[0] == "sim-gpio-22"
