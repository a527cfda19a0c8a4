from __future__ import annotations

import asyncio

import pytest
from aiomqtt import MqttError

from sensorhub.services.broker import AiomqttBrokerClient, parse_endpoint


@pytest.mark.parametrize(
    "endpoint, expected",
    [
        ("ssl://mqtt.googleapis.com:8883", ("mqtt.googleapis.com", 8883, True)),
        ("mqtts://broker.local", ("broker.local", 8883, True)),
        ("tcp://localhost:1884", ("localhost", 1884, False)),
        ("mqtt://10.0.0.5", ("10.0.0.5", 1883, False)),
    ],
)
def test_parse_endpoint(endpoint, expected):
    assert parse_endpoint(endpoint) == expected


@pytest.mark.parametrize("endpoint", ["http://example.com", "ssl://", "mqtt.googleapis.com:8883"])
def test_parse_endpoint_rejects_bad_urls(endpoint):
    with pytest.raises(ValueError):
        parse_endpoint(endpoint)


def test_client_refuses_to_publish_before_connecting():
    client = AiomqttBrokerClient()

    async def runner():
        await client.publish("/devices/hub-1/events", b"{}", 1, False)

    assert client.is_connected() is False
    with pytest.raises(MqttError):
        asyncio.run(runner())


def test_disconnect_without_session_is_harmless():
    client = AiomqttBrokerClient()

    asyncio.run(client.disconnect())
    asyncio.run(client.disconnect())

    assert client.is_connected() is False
