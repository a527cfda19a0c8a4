from __future__ import annotations

import time
from typing import Dict

import psutil
from fastapi import APIRouter, Depends, Request

from sensorhub.config import Settings, get_settings
from sensorhub.http_utils import current_hub

router = APIRouter(prefix="/v1")


@router.get("/status")
async def status_endpoint(request: Request, settings: Settings = Depends(get_settings)) -> Dict[str, object]:
    uptime = int(time.monotonic() - getattr(request.app.state, "started_at", time.monotonic()))
    disk = psutil.disk_usage("/")
    memory = psutil.virtual_memory()
    hub = current_hub(request.app)
    return {
        "service": settings.service_name,
        "service_version": settings.service_version,
        "uptime_seconds": uptime,
        "cpu_percent": psutil.cpu_percent(interval=0.0),
        "memory_percent": memory.percent,
        "storage_used_bytes": disk.used,
        "storage_total_bytes": disk.total,
        "configured": hub is not None,
        "hub_error": getattr(request.app.state, "hub_error", None),
        "hub": hub.snapshot() if hub else None,
    }
