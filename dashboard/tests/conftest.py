"""
Shared test fixtures for the sync core tests.

Provides environment variable fixtures for SyncSettings tests, a manually
advanced clock for staleness tests, and raw payload builders. All sync env
vars are cleaned before each test to ensure isolation.

CHANGELOG:
- 2026-10-19: Add FakeClock and payload fixtures (STORY-004)
- 2026-10-19: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

# All SyncSettings environment variable names, used for cleanup.
_ALL_SYNC_ENV_VARS = (
    "API_BASE_URL",
    "SOCKET_URL",
    "DEVICE_ID",
    "PUSH_EVENT",
    "POLL_INTERVAL_S",
    "PULL_TIMEOUT_S",
    "FRESHNESS_WINDOW_S",
    "TICK_INTERVAL_S",
    "HISTORY_CAPACITY",
    "SEED_HISTORY",
    "STATUS_FILE",
)


class FakeClock:
    """Monotonic clock advanced explicitly by tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _clean_sync_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all sync env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_SYNC_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set all required and optional environment variables for SyncSettings."""
    env = {
        "API_BASE_URL": "https://dashboard.example.com/api",
        "SOCKET_URL": "https://realtime.example.com",
        "DEVICE_ID": "ESP32-PUMP-07",
        "PUSH_EVENT": "esp32_reading",
        "POLL_INTERVAL_S": "2.5",
        "PULL_TIMEOUT_S": "4",
        "FRESHNESS_WINDOW_S": "45",
        "TICK_INTERVAL_S": "2",
        "HISTORY_CAPACITY": "50",
        "SEED_HISTORY": "false",
        "STATUS_FILE": "/tmp/esp32-status.json",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required environment variables (no optional ones)."""
    env = {"API_BASE_URL": "http://localhost:5000/api"}
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_payload() -> Callable[..., dict[str, Any]]:
    """Return a builder for flat raw sensor payloads."""

    def _make(
        device_id: str = "ESP32-PUMP-01",
        timestamp: str = "2026-10-19T10:00:00Z",
        **fields: Any,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "device_id": device_id,
            "timestamp": timestamp,
            "voltage": 220.0,
            "current": 2.0,
            "power": 440.0,
            "energy": 1.25,
            "pir_status": False,
            "pump_status": True,
        }
        payload.update(fields)
        return payload

    return _make
