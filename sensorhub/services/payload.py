"""JSON wire formats for telemetry, device state and device config."""
from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Union

from pydantic import ValidationError

from sensorhub.exceptions import PayloadDecodeError
from sensorhub.models import DeviceConfig, DeviceState, SensorReading

_SEPARATORS = (",", ":")


def _dumps(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=_SEPARATORS, ensure_ascii=False, allow_nan=False).encode("utf-8")


def reading_to_dict(reading: SensorReading) -> Dict[str, Any]:
    return {
        f"timestamp_{reading.sensor_name}": reading.timestamp,
        reading.sensor_name: reading.value,
    }


def encode_telemetry(readings: Iterable[SensorReading]) -> bytes:
    """``{"data": [{"timestamp_<id>": <millis>, "<id>": <value>}, ...]}`` in batch order."""

    return _dumps({"data": [reading_to_dict(reading) for reading in readings]})


def state_to_dict(state: DeviceState) -> Dict[str, Any]:
    return {
        "version": state.version,
        "telemetry-events-per-hour": state.telemetry_events_per_hour,
        "state-updates-per-hour": state.state_updates_per_hour,
        "sensors": list(state.sensors),
        "active-sensors": list(state.active_sensors),
    }


def encode_state(state: DeviceState) -> bytes:
    return _dumps(state_to_dict(state))


def decode_device_config(payload: Union[bytes, bytearray, str]) -> DeviceConfig:
    """Parse an inbound config message.

    Raises PayloadDecodeError on malformed JSON, a non-object document, a missing
    required field or a value of the wrong type. Nothing is defaulted.
    """

    try:
        text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
        document = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PayloadDecodeError(f"device config is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise PayloadDecodeError("device config must be a JSON object")
    try:
        return DeviceConfig.model_validate(document)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in error["loc"]) for error in exc.errors())
        raise PayloadDecodeError(f"invalid device config ({fields})") from exc
