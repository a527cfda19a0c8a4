from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from sensorhub.config import ConnectionParams, normalize_key_algorithm


class ConnectionUpdate(BaseModel):
    """Body of ``PUT /v1/connection``."""

    project_id: str = Field(min_length=1)
    registry_id: str = Field(min_length=1)
    cloud_region: str = Field(default="us-central1", min_length=1)
    device_id: str = Field(min_length=1)
    key_algorithm: Literal["RS256", "ES256"] = "RS256"

    @field_validator("key_algorithm", mode="before")
    @classmethod
    def _normalize_algorithm(cls, value: Optional[str]) -> str:
        return normalize_key_algorithm(value)

    def to_params(self) -> ConnectionParams:
        return ConnectionParams(**self.model_dump())
