from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from sensorhub.config import ConnectionParams, Settings, get_settings
from sensorhub.models import DeviceConfig
from sensorhub.services.config_store import ConfigStore, resolve_connection


def test_defaults_match_bridge_conventions():
    settings = get_settings()

    assert settings.telemetry_events_per_hour == 180
    assert settings.state_updates_per_hour == 60
    assert settings.broker_url == "ssl://mqtt.googleapis.com:8883"
    assert settings.connection_params() is None


def test_environment_overrides_and_clamps(monkeypatch):
    monkeypatch.setenv("SENSORHUB_PROJECT_ID", "demo-project")
    monkeypatch.setenv("SENSORHUB_REGISTRY_ID", "demo-registry")
    monkeypatch.setenv("SENSORHUB_DEVICE_ID", "hub-9")
    monkeypatch.setenv("SENSORHUB_KEY_ALGORITHM", "ec")
    monkeypatch.setenv("SENSORHUB_TELEMETRY_EVENTS_PER_HOUR", "0")
    monkeypatch.setenv("SENSORHUB_STATE_UPDATES_PER_HOUR", "999999")
    get_settings.cache_clear()

    settings = get_settings()
    params = settings.connection_params()

    assert settings.telemetry_events_per_hour == 1
    assert settings.state_updates_per_hour == 36000
    assert params.key_algorithm == "ES256"
    assert params.client_id == "projects/demo-project/locations/us-central1/registries/demo-registry/devices/hub-9"
    assert params.telemetry_topic == "/devices/hub-9/events"
    assert params.state_topic == "/devices/hub-9/state"
    assert params.config_topic == "/devices/hub-9/config"


def test_invalid_key_algorithm_is_rejected():
    with pytest.raises(ValidationError):
        Settings(key_algorithm="HS256")


def test_connection_params_are_frozen(params):
    with pytest.raises(ValidationError):
        params.device_id = "other"


def test_store_round_trips_connection_and_device_config(tmp_path, params):
    store = ConfigStore(tmp_path / "nested" / "config.json")
    config = DeviceConfig(
        version=5,
        telemetry_events_per_hour=90,
        state_updates_per_hour=10,
        active_sensors=["temperature"],
    )

    store.save_connection(params)
    store.save_device_config(config)

    raw = json.loads(store.path.read_text())
    assert raw["device"]["telemetry-events-per-hour"] == 90
    assert store.load_connection() == params
    assert store.load_device_config() == config
    assert not store.path.with_suffix(".tmp").exists()

    store.clear_device_config()
    assert store.load_device_config() is None
    assert store.load_connection() == params


def test_store_tolerates_corrupt_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    store = ConfigStore(path)

    assert store.load() == {}
    assert store.load_connection() is None


def test_persisted_connection_wins_over_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("SENSORHUB_PROJECT_ID", "env-project")
    monkeypatch.setenv("SENSORHUB_REGISTRY_ID", "env-registry")
    monkeypatch.setenv("SENSORHUB_DEVICE_ID", "env-device")
    get_settings.cache_clear()
    store = ConfigStore(tmp_path / "config.json")

    assert resolve_connection(get_settings(), store).device_id == "env-device"

    store.save_connection(ConnectionParams(project_id="p", registry_id="r", device_id="stored"))
    assert resolve_connection(get_settings(), store).device_id == "stored"
