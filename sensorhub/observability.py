"""JSON logging for the agent.

Every record is stamped with the service name and the device id of the running
hub. Records emitted while serving a local API request also carry its request id.
"""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-ID"
_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Collector callback threads log too, so the device id is process-wide, not a context var.
_device_id: Optional[str] = None

_CONTEXT_FIELDS = ("service", "device_id", "request_id")
_RESERVED_FIELDS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", *_CONTEXT_FIELDS}


def set_device_id(device_id: Optional[str]) -> None:
    global _device_id
    _device_id = device_id


def get_device_id() -> Optional[str]:
    return _device_id


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        token = _request_id_ctx.set(request_id)
        try:
            response = await call_next(request)
        finally:
            _request_id_ctx.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class AgentContextFilter(logging.Filter):
    """Attaches service, device and request context; explicit ``extra`` values win."""

    def __init__(self, service: str) -> None:
        super().__init__()
        self._service = service

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self._service
        record.device_id = getattr(record, "device_id", None) or get_device_id()
        record.request_id = getattr(record, "request_id", None) or get_request_id()
        return True


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }
        for field in _CONTEXT_FIELDS:
            payload[field] = getattr(record, field, None)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        extra = {key: value for key, value in vars(record).items() if key not in _RESERVED_FIELDS}
        if extra:
            payload["extra"] = extra
        return json.dumps(payload, default=str)


def configure_logging(service: str, level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(AgentContextFilter(service))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())

    # uvicorn installs its own handlers; route them through ours.
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.setLevel(level.upper())
        uvicorn_logger.propagate = False


def configure_observability(app: FastAPI, *, service_name: str, log_level: str) -> None:
    configure_logging(service_name, log_level)
    app.add_middleware(RequestIdMiddleware)
