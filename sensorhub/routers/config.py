from __future__ import annotations

from typing import Dict

from fastapi import APIRouter, Depends, Request

from sensorhub.auth import require_provisioning_auth
from sensorhub.config import Settings, get_settings
from sensorhub.http_utils import config_store, current_hub, replace_connection
from sensorhub.schemas import ConnectionUpdate
from sensorhub.services.config_store import resolve_connection

router = APIRouter(prefix="/v1", dependencies=[Depends(require_provisioning_auth)])


@router.get("/config")
async def config(request: Request, settings: Settings = Depends(get_settings)) -> Dict:
    store = config_store(request.app)
    params = resolve_connection(settings, store)
    hub = current_hub(request.app)
    device = None
    version = 0
    if hub is not None:
        version = hub.reconciler.current_version
        if hub.reconciler.last_config is not None:
            device = hub.reconciler.last_config.model_dump(mode="json", by_alias=True)
    return {
        "connection": params.model_dump(mode="json") if params else None,
        "client_id": params.client_id if params else None,
        "broker_url": settings.broker_url,
        "config_version": version,
        "device_config": device,
    }


@router.put("/connection")
async def update_connection(
    payload: ConnectionUpdate,
    request: Request,
    settings: Settings = Depends(get_settings),
) -> Dict:
    params = payload.to_params()
    hub = await replace_connection(request.app, settings, params)
    return {
        "status": "applied",
        "connection": params.model_dump(mode="json"),
        "running": bool(hub and hub.running),
        "hub_error": getattr(request.app.state, "hub_error", None),
    }
