"""Exceptions raised by the sensor hub."""
from __future__ import annotations


class SensorHubError(Exception):
    """Base exception for the sensor hub agent."""


class PayloadDecodeError(SensorHubError, ValueError):
    """An inbound payload is structurally invalid."""


class CredentialError(SensorHubError):
    """The device key could not be loaded or a token could not be signed."""


class CollectorError(SensorHubError):
    """A sensor collector failed to activate or read."""
