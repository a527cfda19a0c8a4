from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
TESTS_ROOT = Path(__file__).resolve().parent
for path in (PROJECT_ROOT, TESTS_ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from sensorhub.config import ConnectionParams, get_settings  # noqa: E402


@pytest.fixture(autouse=True)
def reset_settings_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SENSORHUB_CONFIG_PATH", str(tmp_path / "sensorhub_config.json"))
    monkeypatch.setenv("SENSORHUB_PRIVATE_KEY_PATH", str(tmp_path / "device_private.pem"))
    monkeypatch.setenv("SENSORHUB_CERTIFICATE_PATH", str(tmp_path / "device_cert.pem"))
    for name in ("SENSORHUB_PROJECT_ID", "SENSORHUB_REGISTRY_ID", "SENSORHUB_DEVICE_ID"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def params() -> ConnectionParams:
    return ConnectionParams(
        project_id="demo-project",
        registry_id="demo-registry",
        cloud_region="us-central1",
        device_id="hub-1",
    )
