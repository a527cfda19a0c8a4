"""FastAPI application hosting the sensor hub and its local status/config API."""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sensorhub.config import get_settings
from sensorhub.http_utils import start_hub, stop_hub
from sensorhub.observability import configure_observability
from sensorhub.routers import config as config_router
from sensorhub.routers import status as status_router
from sensorhub.services.config_store import ConfigStore, resolve_connection

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    store = ConfigStore(settings.config_file)
    app.state.config_store = store
    app.state.hub = None
    app.state.hub_error = None
    app.state.started_at = time.monotonic()
    params = resolve_connection(settings, store)
    if params is None:
        logger.warning("Device identity incomplete; set project, registry and device ids to start publishing")
    else:
        await start_hub(app, settings, params)
    logger.info("Sensor hub agent started (%s %s)", settings.service_name, settings.service_version)

    try:
        yield
    finally:
        await stop_hub(app)
        logger.info("Sensor hub agent shutting down")


settings = get_settings()
app = FastAPI(title="Sensor Hub", lifespan=lifespan)
configure_observability(app, service_name=settings.service_name, log_level=settings.log_level)

app.include_router(status_router.router)
app.include_router(config_router.router)


def run() -> None:  # pragma: no cover
    import uvicorn

    uvicorn.run("sensorhub.main:app", host="0.0.0.0", port=9000)


if __name__ == "__main__":  # pragma: no cover
    run()
