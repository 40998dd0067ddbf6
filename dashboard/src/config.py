"""
Sync core configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
Poll interval, freshness window, tick interval, history capacity and pull
timeout are configuration, not constants, so every monitoring session agrees
on the same values.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-001)

TODO:
- None
"""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class SyncSettings(BaseSettings):
    """Configuration for one ESP32 dashboard monitoring session.

    Attributes:
        api_base_url: Dashboard API base URL, e.g. ``http://localhost:5000/api``.
        socket_url: Socket.IO server URL. Defaults to api_base_url without a
            trailing ``/api``.
        device_id: Device monitored on startup.
        push_event: Socket.IO event carrying sensor readings.
        poll_interval_s: Seconds between pull requests.
        pull_timeout_s: Timeout for a single pull request.
        freshness_window_s: Seconds a reading counts as live.
        tick_interval_s: Seconds between health recomputations.
        history_capacity: Readings kept per device.
        seed_history: Pre-fill the history buffer from the API on start.
        status_file: Path of the JSON status file; empty disables it.
    """

    api_base_url: str
    socket_url: str = ""
    device_id: str = "ESP32-PUMP-01"
    push_event: str = "sensor_data"
    poll_interval_s: float = 5.0
    pull_timeout_s: float = 10.0
    freshness_window_s: float = 30.0
    tick_interval_s: float = 1.0
    history_capacity: int = 20
    seed_history: bool = True
    status_file: str = ""

    @field_validator("api_base_url", "socket_url")
    @classmethod
    def url_must_be_http(cls, v: str) -> str:
        """Validate that URLs use http(s) and strip a trailing slash."""
        if v and not v.lower().startswith(("http://", "https://")):
            raise ValueError(f"URL must use http:// or https:// (got: '{v[:20]}...')")
        return v.rstrip("/")

    @field_validator("device_id", "push_event")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("poll_interval_s", "pull_timeout_s", "freshness_window_s", "tick_interval_s")
    @classmethod
    def interval_must_be_positive(cls, v: float) -> float:
        """Validate that intervals and timeouts are strictly positive."""
        if v <= 0:
            raise ValueError("intervals and timeouts must be > 0")
        return v

    @field_validator("history_capacity")
    @classmethod
    def history_capacity_must_be_valid(cls, v: int) -> int:
        """Validate history capacity is between 1 and 1000."""
        if v < 1 or v > 1000:
            raise ValueError("HISTORY_CAPACITY must be >= 1 and <= 1000")
        return v

    @model_validator(mode="after")
    def _default_socket_url(self) -> "SyncSettings":
        """Default socket_url to the API origin when not explicitly set."""
        if not self.socket_url:
            url = self.api_base_url
            self.socket_url = url[: -len("/api")] if url.endswith("/api") else url
        return self

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
