from __future__ import annotations

import json

import pytest

from sensorhub.exceptions import PayloadDecodeError
from sensorhub.models import DeviceState, SensorReading
from sensorhub.services.payload import decode_device_config, encode_state, encode_telemetry

VALID_CONFIG = {
    "version": 3,
    "telemetry-events-per-hour": 120,
    "state-updates-per-hour": 30,
    "active-sensors": ["temperature", "motion"],
}


def test_telemetry_payload_is_compact_and_keyed_by_sensor():
    payload = encode_telemetry([SensorReading(timestamp=1000, sensor_name="temperature", value=21.5)])

    assert payload == b'{"data":[{"timestamp_temperature":1000,"temperature":21.5}]}'


def test_telemetry_payload_keeps_batch_order():
    readings = [
        SensorReading(timestamp=10, sensor_name="temperature", value=20.0),
        SensorReading(timestamp=5, sensor_name="motion", value=1.0),
    ]

    data = json.loads(encode_telemetry(readings))["data"]

    assert data == [
        {"timestamp_temperature": 10, "temperature": 20.0},
        {"timestamp_motion": 5, "motion": 1.0},
    ]


def test_state_payload_uses_wire_field_names():
    state = DeviceState(
        version=2,
        telemetry_events_per_hour=180,
        state_updates_per_hour=60,
        sensors=["temperature", "motion"],
        active_sensors=["temperature"],
    )

    assert json.loads(encode_state(state)) == {
        "version": 2,
        "telemetry-events-per-hour": 180,
        "state-updates-per-hour": 60,
        "sensors": ["temperature", "motion"],
        "active-sensors": ["temperature"],
    }


def test_decode_device_config_accepts_valid_payload_and_ignores_extras():
    config = decode_device_config(json.dumps({**VALID_CONFIG, "comment": "hello"}).encode())

    assert config.version == 3
    assert config.telemetry_events_per_hour == 120
    assert config.state_updates_per_hour == 30
    assert config.active_sensors == ["temperature", "motion"]


def test_decode_missing_version_fails():
    payload = {key: value for key, value in VALID_CONFIG.items() if key != "version"}

    with pytest.raises(PayloadDecodeError) as excinfo:
        decode_device_config(json.dumps(payload).encode())

    assert "version" in str(excinfo.value)
    assert isinstance(excinfo.value, ValueError)


@pytest.mark.parametrize(
    "overrides",
    [
        {"version": "3"},
        {"version": 3.0},
        {"version": True},
        {"telemetry-events-per-hour": 0},
        {"state-updates-per-hour": -5},
        {"active-sensors": "temperature"},
        {"active-sensors": ["temperature", 7]},
    ],
)
def test_decode_rejects_wrong_types(overrides):
    with pytest.raises(PayloadDecodeError):
        decode_device_config(json.dumps({**VALID_CONFIG, **overrides}).encode())


@pytest.mark.parametrize("raw", [b"", b"not json", b"[1, 2]", b"\xff\xfe", b"null"])
def test_decode_rejects_non_object_documents(raw):
    with pytest.raises(PayloadDecodeError):
        decode_device_config(raw)
