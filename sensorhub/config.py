"""Runtime configuration for the sensor hub agent."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TELEMETRY_EVENTS_PER_HOUR = 60 * 3  # every 20 seconds
DEFAULT_STATE_UPDATES_PER_HOUR = 60  # every minute
MAX_EVENTS_PER_HOUR = 3600 * 10

KEY_ALGORITHM_ALIASES = {
    "RSA": "RS256",
    "RS256": "RS256",
    "EC": "ES256",
    "ES256": "ES256",
}


def normalize_key_algorithm(value: str | None) -> str:
    if not value:
        return "RS256"
    cleaned = str(value).strip().upper()
    try:
        return KEY_ALGORITHM_ALIASES[cleaned]
    except KeyError as exc:
        raise ValueError(
            f"Invalid key algorithm {value!r}; supported are {sorted(set(KEY_ALGORITHM_ALIASES.values()))}"
        ) from exc


def _clamp_events_per_hour(value: int, *, field: str) -> int:
    try:
        parsed = int(value)
    except Exception as exc:
        raise ValueError(f"{field} must be an integer") from exc
    return max(1, min(parsed, MAX_EVENTS_PER_HOUR))


class ConnectionParams(BaseModel):
    """Identity of the device on the broker. Immutable for the life of a hub."""

    model_config = ConfigDict(frozen=True)

    project_id: str = Field(min_length=1)
    registry_id: str = Field(min_length=1)
    cloud_region: str = Field(default="us-central1", min_length=1)
    device_id: str = Field(min_length=1)
    key_algorithm: Literal["RS256", "ES256"] = "RS256"

    @field_validator("key_algorithm", mode="before")
    @classmethod
    def _normalize_algorithm(cls, value: str | None) -> str:
        return normalize_key_algorithm(value)

    @property
    def client_id(self) -> str:
        return (
            f"projects/{self.project_id}/locations/{self.cloud_region}"
            f"/registries/{self.registry_id}/devices/{self.device_id}"
        )

    @property
    def telemetry_topic(self) -> str:
        return f"/devices/{self.device_id}/events"

    @property
    def state_topic(self) -> str:
        return f"/devices/{self.device_id}/state"

    @property
    def config_topic(self) -> str:
        return f"/devices/{self.device_id}/config"


class Settings(BaseSettings):
    """Environment driven settings with defaults suitable for a Cloud IoT style bridge."""

    service_name: str = "sensorhub"
    service_version: str = "0.1.0"
    log_level: str = "INFO"

    project_id: Optional[str] = Field(default=None, description="Cloud project that owns the registry")
    registry_id: Optional[str] = Field(default=None, description="Device registry id")
    cloud_region: str = Field(default="us-central1", description="Region hosting the registry")
    device_id: Optional[str] = Field(default=None, description="Device id inside the registry")
    key_algorithm: str = Field(default="RS256", description="JWT signing algorithm: RS256 or ES256")

    mqtt_scheme: str = Field(default="ssl", description="Broker URL scheme (ssl/mqtts for TLS, tcp/mqtt for plain)")
    mqtt_bridge_hostname: str = "mqtt.googleapis.com"
    mqtt_bridge_port: int = 8883
    mqtt_keepalive_seconds: int = Field(default=60, ge=5)
    mqtt_connect_timeout_seconds: float = Field(default=10.0, gt=0)

    private_key_path: str = "storage/device_private.pem"
    certificate_path: Optional[str] = Field(
        default="storage/cloud_iot_auth_certificate.pem",
        description="Where the self-signed device certificate is exported for registration",
    )
    token_lifetime_minutes: int = Field(default=60, ge=1, le=24 * 60)

    telemetry_events_per_hour: int = DEFAULT_TELEMETRY_EVENTS_PER_HOUR
    state_updates_per_hour: int = DEFAULT_STATE_UPDATES_PER_HOUR
    connect_failures_before_backoff: int = Field(
        default=20,
        ge=0,
        description="Consecutive failed cycles before a task slows to backoff_interval_seconds (0 disables)",
    )
    backoff_interval_seconds: float = Field(default=60.0, gt=0)

    simulate_sensors: bool = Field(default=False, description="Register simulated environment/motion collectors")
    simulation_seed: Optional[int] = None
    motion_gpio: Optional[int] = Field(default=None, description="BCM GPIO wired to a PIR motion detector")

    config_path: str = "storage/sensorhub_config.json"
    provisioning_secret: SecretStr | None = None

    model_config = SettingsConfigDict(
        env_prefix="SENSORHUB_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("telemetry_events_per_hour")
    @classmethod
    def _clamp_telemetry(cls, value: int) -> int:
        return _clamp_events_per_hour(value, field="telemetry_events_per_hour")

    @field_validator("state_updates_per_hour")
    @classmethod
    def _clamp_state(cls, value: int) -> int:
        return _clamp_events_per_hour(value, field="state_updates_per_hour")

    @field_validator("key_algorithm")
    @classmethod
    def _normalize_algorithm(cls, value: str) -> str:
        return normalize_key_algorithm(value)

    @property
    def broker_url(self) -> str:
        return f"{self.mqtt_scheme}://{self.mqtt_bridge_hostname}:{self.mqtt_bridge_port}"

    @property
    def config_file(self) -> Path:
        path = Path(self.config_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def connection_params(self) -> Optional[ConnectionParams]:
        """Return connection params, or None while the device identity is incomplete."""

        if not (self.project_id and self.registry_id and self.device_id and self.cloud_region):
            return None
        return ConnectionParams(
            project_id=self.project_id,
            registry_id=self.registry_id,
            cloud_region=self.cloud_region,
            device_id=self.device_id,
            key_algorithm=self.key_algorithm,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
