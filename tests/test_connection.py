from __future__ import annotations

import asyncio
import datetime as dt
import json

import pytest
from aiomqtt import MqttError
from fakes import FakeBroker, FakeSigner

from sensorhub.exceptions import CredentialError
from sensorhub.models import DeviceState, SensorReading
from sensorhub.services.connection import ConnectionManager, ConnectionState

ENDPOINT = "ssl://mqtt.example.test:8883"


def _manager(params, broker=None, signer=None):
    broker = broker or FakeBroker()
    signer = signer or FakeSigner()
    return ConnectionManager(params, broker, signer, endpoint=ENDPOINT), broker, signer


def test_ensure_connected_signs_connects_and_subscribes(params):
    manager, broker, signer = _manager(params)

    assert asyncio.run(manager.ensure_connected()) is True

    assert manager.state is ConnectionState.CONNECTED
    assert signer.signed == ["demo-project"]
    assert broker.connect_calls == [
        (
            ENDPOINT,
            "projects/demo-project/locations/us-central1/registries/demo-registry/devices/hub-1",
            "unused",
            "token-1",
        )
    ]
    assert broker.subscriptions == [("/devices/hub-1/config", 1)]


def test_connected_session_is_reused(params):
    manager, broker, _ = _manager(params)

    async def runner():
        await manager.ensure_connected()
        return await manager.ensure_connected()

    assert asyncio.run(runner()) is True
    assert len(broker.connect_calls) == 1


def test_connect_failure_leaves_disconnected_without_retrying(params):
    manager, broker, _ = _manager(params, broker=FakeBroker(fail_connect=True))

    assert asyncio.run(manager.ensure_connected()) is False

    assert manager.state is ConnectionState.DISCONNECTED
    assert len(broker.connect_calls) == 1
    assert "connection refused" in manager.last_error
    assert manager.connect_attempts == 1


def test_signing_failure_is_a_failed_connect(params):
    class _BrokenSigner:
        def sign(self, project_id):
            raise CredentialError("key missing")

    manager, broker, _ = _manager(params, signer=_BrokenSigner())

    assert asyncio.run(manager.ensure_connected()) is False
    assert broker.connect_calls == []
    assert manager.state is ConnectionState.DISCONNECTED


def test_expired_credential_forces_reconnect(params):
    signer = FakeSigner(lifetime=dt.timedelta(seconds=-1))
    manager, broker, _ = _manager(params, signer=signer)

    async def runner():
        await manager.ensure_connected()
        return await manager.ensure_connected()

    assert asyncio.run(runner()) is True
    assert [call[3] for call in broker.connect_calls] == ["token-1", "token-2"]
    assert broker.disconnect_calls >= 1


def test_broker_drop_marks_disconnected_and_next_call_reconnects(params):
    manager, broker, _ = _manager(params)

    async def runner():
        await manager.ensure_connected()
        broker.drop()
        assert manager.state is ConnectionState.DISCONNECTED
        assert manager.is_ready() is False
        return await manager.ensure_connected()

    assert asyncio.run(runner()) is True
    assert len(broker.connect_calls) == 2
    assert manager.last_error is None


def test_publish_preconditions(params):
    manager, broker, _ = _manager(params)
    reading = SensorReading(timestamp=1000, sensor_name="temperature", value=21.5)

    async def runner():
        not_connected = await manager.publish_telemetry([reading])
        await manager.ensure_connected()
        empty = await manager.publish_telemetry([])
        sent = await manager.publish_telemetry([reading])
        return not_connected, empty, sent

    assert asyncio.run(runner()) == (False, False, True)
    assert broker.published == [
        (
            "/devices/hub-1/events",
            b'{"data":[{"timestamp_temperature":1000,"temperature":21.5}]}',
            1,
            False,
        )
    ]


def test_publish_state_goes_to_state_topic(params):
    manager, broker, _ = _manager(params)
    state = DeviceState(version=0, telemetry_events_per_hour=180, state_updates_per_hour=60, sensors=["motion"])

    async def runner():
        await manager.ensure_connected()
        await manager.publish_state(state)

    asyncio.run(runner())

    assert broker.published_on("/devices/hub-1/state") == [
        {
            "version": 0,
            "telemetry-events-per-hour": 180,
            "state-updates-per-hour": 60,
            "sensors": ["motion"],
            "active-sensors": [],
        }
    ]
    assert manager.published_messages == 1


def test_publish_failure_drops_the_session(params):
    manager, broker, _ = _manager(params, broker=FakeBroker(fail_publish=True))
    reading = SensorReading(timestamp=1, sensor_name="motion", value=1.0)

    async def runner():
        await manager.ensure_connected()
        await manager.publish_telemetry([reading])

    with pytest.raises(MqttError):
        asyncio.run(runner())
    assert manager.state is ConnectionState.DISCONNECTED


def test_inbound_messages_reach_the_config_handler(params):
    manager, broker, _ = _manager(params)
    received = []
    manager.config_handler = received.append
    body = json.dumps({"version": 1}).encode()

    broker.deliver("/devices/hub-1/config", b"")
    broker.deliver("/devices/other/config", body)
    broker.deliver("/devices/hub-1/config", body)

    assert received == [body]


def test_disconnect_is_idempotent(params):
    manager, broker, _ = _manager(params)

    async def runner():
        await manager.ensure_connected()
        await manager.disconnect()
        await manager.disconnect()

    asyncio.run(runner())

    assert broker.disconnect_calls == 1
    assert manager.state is ConnectionState.DISCONNECTED
    assert manager.snapshot()["credential_expires_at"] is None
