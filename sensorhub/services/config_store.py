"""Durable options: connection params and the last applied device config."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from sensorhub.config import ConnectionParams, Settings
from sensorhub.models import DeviceConfig

logger = logging.getLogger(__name__)


class ConfigStore:
    """JSON document on disk, replaced atomically through a temp file."""

    def __init__(self, path: Path):
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text())
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable config file %s", self.path)
            return {}
        return payload if isinstance(payload, dict) else {}

    def save(self, payload: Dict[str, Any]) -> None:
        temp_path = self.path.with_suffix(".tmp")
        temp_path.write_text(json.dumps(payload, indent=2, sort_keys=True))
        temp_path.replace(self.path)

    def load_connection(self) -> Optional[ConnectionParams]:
        raw = self.load().get("connection")
        if not raw:
            return None
        try:
            return ConnectionParams.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Ignoring invalid persisted connection params: %s", exc)
            return None

    def save_connection(self, params: ConnectionParams) -> None:
        payload = self.load()
        payload["connection"] = params.model_dump(mode="json")
        self.save(payload)

    def load_device_config(self) -> Optional[DeviceConfig]:
        raw = self.load().get("device")
        if not raw:
            return None
        try:
            return DeviceConfig.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Ignoring invalid persisted device config: %s", exc)
            return None

    def save_device_config(self, config: DeviceConfig) -> None:
        payload = self.load()
        payload["device"] = config.model_dump(mode="json", by_alias=True)
        self.save(payload)

    def clear_device_config(self) -> None:
        payload = self.load()
        if payload.pop("device", None) is not None:
            self.save(payload)


def resolve_connection(settings: Settings, store: ConfigStore) -> Optional[ConnectionParams]:
    """Persisted connection params win over the environment."""

    return store.load_connection() or settings.connection_params()
