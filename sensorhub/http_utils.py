from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI

from sensorhub.config import ConnectionParams, Settings
from sensorhub.exceptions import CredentialError
from sensorhub.observability import set_device_id
from sensorhub.services.config_store import ConfigStore
from sensorhub.services.hub import SensorHub, create_hub

logger = logging.getLogger(__name__)


def current_hub(app: FastAPI) -> Optional[SensorHub]:
    return getattr(app.state, "hub", None)


def config_store(app: FastAPI) -> ConfigStore:
    store: ConfigStore | None = getattr(app.state, "config_store", None)
    if store is None:
        raise RuntimeError("Config store not initialised")
    return store


async def start_hub(app: FastAPI, settings: Settings, params: ConnectionParams) -> Optional[SensorHub]:
    """Build and start a hub for ``params``, re-applying the last device settings it received."""

    store = config_store(app)
    try:
        hub = create_hub(settings, params, on_config_applied=store.save_device_config)
    except CredentialError as exc:
        logger.error("Cannot start sensor hub for %s: %s", params.device_id, exc)
        app.state.hub = None
        app.state.hub_error = str(exc)
        return None
    set_device_id(params.device_id)
    hub.start(restore=store.load_device_config())
    app.state.hub = hub
    app.state.hub_error = None
    return hub


async def stop_hub(app: FastAPI) -> None:
    hub = current_hub(app)
    app.state.hub = None
    if hub is not None:
        await hub.stop()
    set_device_id(None)


async def replace_connection(app: FastAPI, settings: Settings, params: ConnectionParams) -> Optional[SensorHub]:
    """Persist new connection params, then tear down and rebuild the hub."""

    store = config_store(app)
    previous = store.load_connection() or settings.connection_params()
    store.save_connection(params)
    if previous is not None and previous.device_id != params.device_id:
        # Rates and sensors applied for another device do not carry over.
        store.clear_device_config()
    await stop_hub(app)
    return await start_hub(app, settings, params)
