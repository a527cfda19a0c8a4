"""MQTT transport used by the connection manager."""
from __future__ import annotations

import asyncio
import logging
import ssl
from contextlib import AsyncExitStack
from typing import Callable, Optional, Protocol, Tuple
from urllib.parse import urlsplit

from aiomqtt import Client, MqttError, ProtocolVersion

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], None]
DisconnectHandler = Callable[[Optional[str]], None]

TLS_SCHEMES = {"ssl", "mqtts", "tls"}
PLAIN_SCHEMES = {"tcp", "mqtt"}


class BrokerClient(Protocol):
    async def connect(self, endpoint: str, client_id: str, username: str, password: str) -> None:
        ...

    def is_connected(self) -> bool:
        ...

    async def subscribe(self, topic: str, qos: int) -> None:
        ...

    async def publish(self, topic: str, payload: bytes, qos: int, retain: bool) -> None:
        ...

    async def disconnect(self) -> None:
        ...

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        ...

    def set_disconnect_handler(self, handler: Optional[DisconnectHandler]) -> None:
        ...


def parse_endpoint(endpoint: str) -> Tuple[str, int, bool]:
    """Split ``scheme://host:port`` into host, port and whether TLS is required."""

    parts = urlsplit(endpoint)
    scheme = (parts.scheme or "").lower()
    if scheme not in TLS_SCHEMES | PLAIN_SCHEMES:
        raise ValueError(f"Unsupported broker scheme {parts.scheme!r} in {endpoint!r}")
    if not parts.hostname:
        raise ValueError(f"Broker endpoint {endpoint!r} has no host")
    use_tls = scheme in TLS_SCHEMES
    port = parts.port or (8883 if use_tls else 1883)
    return parts.hostname, port, use_tls


class AiomqttBrokerClient:
    """One MQTT 3.1.1 session at a time, kept open by an ``aiomqtt.Client``.

    Inbound messages are read by a background task and handed to the message
    handler; when that task sees the session drop it calls the disconnect handler.
    """

    def __init__(self, *, keepalive: int = 60, timeout: float = 10.0, tls_context: Optional[ssl.SSLContext] = None):
        self._keepalive = keepalive
        self._timeout = timeout
        self._tls_context = tls_context
        self._client: Client | None = None
        self._stack: AsyncExitStack | None = None
        self._listener: asyncio.Task | None = None
        self._connected = False
        self._on_message: Optional[MessageHandler] = None
        self._on_disconnect: Optional[DisconnectHandler] = None

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        self._on_message = handler

    def set_disconnect_handler(self, handler: Optional[DisconnectHandler]) -> None:
        self._on_disconnect = handler

    def is_connected(self) -> bool:
        return self._connected

    async def connect(self, endpoint: str, client_id: str, username: str, password: str) -> None:
        await self._release()
        hostname, port, use_tls = parse_endpoint(endpoint)
        tls_context = None
        if use_tls:
            tls_context = self._tls_context or ssl.create_default_context()
        client = Client(
            hostname,
            port=port,
            identifier=client_id,
            username=username,
            password=password,
            protocol=ProtocolVersion.V311,
            tls_context=tls_context,
            keepalive=self._keepalive,
            timeout=self._timeout,
        )
        stack = AsyncExitStack()
        try:
            await stack.enter_async_context(client)
        except BaseException:
            await stack.aclose()
            raise
        self._client = client
        self._stack = stack
        self._connected = True
        self._listener = asyncio.create_task(self._listen(client), name="mqtt-inbound")
        logger.info("Connected to %s:%s as %s", hostname, port, client_id)

    async def subscribe(self, topic: str, qos: int) -> None:
        client = self._require_client()
        await client.subscribe(topic, qos=qos)

    async def publish(self, topic: str, payload: bytes, qos: int, retain: bool) -> None:
        client = self._require_client()
        await client.publish(topic, payload=payload, qos=qos, retain=retain)

    async def disconnect(self) -> None:
        await self._release()

    def _require_client(self) -> Client:
        if self._client is None or not self._connected:
            raise MqttError("Not connected")
        return self._client

    async def _listen(self, client: Client) -> None:
        reason: Optional[str] = None
        try:
            async for message in client.messages:
                topic = getattr(message.topic, "value", None) or str(message.topic)
                payload = message.payload
                if isinstance(payload, str):
                    payload = payload.encode("utf-8")
                elif not isinstance(payload, (bytes, bytearray)):
                    payload = b"" if payload is None else str(payload).encode("utf-8")
                handler = self._on_message
                if handler is None:
                    continue
                try:
                    handler(topic, bytes(payload))
                except Exception:
                    logger.exception("Inbound message handler failed for %s", topic)
            reason = "message stream closed"
        except asyncio.CancelledError:
            raise
        except MqttError as exc:
            reason = str(exc)
            logger.warning("MQTT session lost: %s", exc)
        if self._client is client:
            self._connected = False
            handler = self._on_disconnect
            if handler is not None:
                handler(reason)

    async def _release(self) -> None:
        self._connected = False
        listener, self._listener = self._listener, None
        stack, self._stack = self._stack, None
        self._client = None
        if listener is not None and listener is not asyncio.current_task():
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass
        if stack is not None:
            try:
                await stack.aclose()
            except MqttError as exc:
                logger.debug("Error closing MQTT session: %s", exc)
