from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from sensorhub.config import Settings, get_settings


def _extract_bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    if not header.lower().startswith("bearer "):
        return None
    token = header.split(" ", 1)[1].strip()
    return token or None


def require_provisioning_auth(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    """Require ``SENSORHUB_PROVISIONING_SECRET`` as a bearer token.

    Without a configured secret the configuration endpoints stay closed.
    """

    token = _extract_bearer_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )

    secret = settings.provisioning_secret.get_secret_value().strip() if settings.provisioning_secret else ""
    if secret and hmac.compare_digest(token, secret):
        return

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Invalid token",
    )
