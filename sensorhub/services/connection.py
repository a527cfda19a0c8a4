"""Authenticated broker session with reconnect-on-demand."""
from __future__ import annotations

import enum
import logging
from typing import Any, Callable, Dict, Iterable, Optional

from aiomqtt import MqttError

from sensorhub.config import ConnectionParams
from sensorhub.exceptions import CredentialError
from sensorhub.models import DeviceState, SensorReading
from sensorhub.services.broker import BrokerClient
from sensorhub.services.credentials import ConnectionCredential, CredentialSigner
from sensorhub.services.payload import encode_state, encode_telemetry

logger = logging.getLogger(__name__)

MQTT_USERNAME = "unused"
MQTT_QOS = 1
MQTT_RETAIN = False

ConfigHandler = Callable[[bytes], None]


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionManager:
    """Owns the single broker session.

    There is no retry loop here: ``ensure_connected`` makes at most one attempt
    and the scheduler calls it again on the next cycle.
    """

    def __init__(
        self,
        params: ConnectionParams,
        broker: BrokerClient,
        signer: CredentialSigner,
        *,
        endpoint: str,
        config_handler: Optional[ConfigHandler] = None,
    ) -> None:
        self.params = params
        self.endpoint = endpoint
        self._broker = broker
        self._signer = signer
        self.config_handler = config_handler
        self.state = ConnectionState.DISCONNECTED
        self.credential: ConnectionCredential | None = None
        self.last_error: str | None = None
        self.connect_attempts = 0
        self.published_messages = 0
        broker.set_message_handler(self.on_inbound_message)
        broker.set_disconnect_handler(self._on_broker_disconnect)

    def is_ready(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self._broker.is_connected()

    async def ensure_connected(self) -> bool:
        if self.is_ready():
            if self.credential is not None and not self.credential.expired():
                return True
            logger.info("Broker credential expired; reconnecting with a fresh token")
            await self._release_transport()
        elif self.state is not ConnectionState.DISCONNECTED:
            await self._release_transport()

        self.state = ConnectionState.CONNECTING
        self.connect_attempts += 1
        try:
            credential = self._signer.sign(self.params.project_id)
            await self._broker.connect(
                self.endpoint,
                self.params.client_id,
                MQTT_USERNAME,
                credential.token,
            )
            await self._broker.subscribe(self.params.config_topic, MQTT_QOS)
        except (MqttError, OSError, CredentialError, ValueError) as exc:
            self.last_error = f"{type(exc).__name__}: {exc}"
            logger.warning("Could not connect to %s: %s", self.endpoint, exc)
            await self._release_transport()
            return False
        self.credential = credential
        self.state = ConnectionState.CONNECTED
        self.last_error = None
        logger.info("Broker session established for %s", self.params.device_id)
        return True

    async def publish_telemetry(self, readings: Iterable[SensorReading]) -> bool:
        batch = list(readings)
        if not batch:
            return False
        return await self._publish(self.params.telemetry_topic, encode_telemetry(batch), kind="telemetry")

    async def publish_state(self, state: DeviceState) -> bool:
        return await self._publish(self.params.state_topic, encode_state(state), kind="state")

    async def _publish(self, topic: str, payload: bytes, *, kind: str) -> bool:
        if not self.is_ready():
            logger.debug("Skipping %s publish; not connected", kind)
            return False
        try:
            await self._broker.publish(topic, payload, MQTT_QOS, MQTT_RETAIN)
        except (MqttError, OSError) as exc:
            self.last_error = f"{type(exc).__name__}: {exc}"
            logger.warning("Failed to publish %s to %s: %s", kind, topic, exc)
            await self._release_transport()
            raise
        self.published_messages += 1
        logger.debug("Published %s (%d bytes) to %s", kind, len(payload), topic)
        return True

    def on_inbound_message(self, topic: str, payload: bytes) -> None:
        if not payload:
            logger.info("Ignoring empty message on %s", topic)
            return
        if topic != self.params.config_topic:
            logger.debug("Ignoring message on unexpected topic %s", topic)
            return
        handler = self.config_handler
        if handler is None:
            logger.debug("No config handler installed; dropping message on %s", topic)
            return
        handler(payload)

    def _on_broker_disconnect(self, reason: Optional[str]) -> None:
        if self.state is ConnectionState.DISCONNECTED:
            return
        logger.warning("Broker disconnected: %s", reason or "unknown reason")
        self.state = ConnectionState.DISCONNECTED
        if reason:
            self.last_error = reason

    async def disconnect(self) -> None:
        if self.state is ConnectionState.DISCONNECTED and not self._broker.is_connected():
            return
        await self._release_transport()
        logger.info("Disconnected from %s", self.endpoint)

    async def _release_transport(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.credential = None
        try:
            await self._broker.disconnect()
        except (MqttError, OSError) as exc:
            logger.debug("Error releasing broker transport: %s", exc)

    def snapshot(self) -> Dict[str, Any]:
        credential = self.credential
        return {
            "state": self.state.value,
            "endpoint": self.endpoint,
            "client_id": self.params.client_id,
            "connect_attempts": self.connect_attempts,
            "published_messages": self.published_messages,
            "last_error": self.last_error,
            "credential_expires_at": credential.expires_at.isoformat() if credential else None,
        }
