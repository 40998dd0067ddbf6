"""
Pydantic models for ESP32 sensor readings and derived sync state.

Defines the canonical Reading model produced by the normalizer, the derived
HealthState enum, and the result/snapshot models handed to consumers of the
synchronization core.

CHANGELOG:
- 2026-10-19: Normalize Reading.timestamp to aware UTC
- 2026-10-19: Add StatusSnapshot and DataReport (STORY-009)
- 2026-10-19: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

MEASUREMENT_FIELDS: tuple[str, ...] = ("voltage", "current", "power", "energy")
"""Numeric measurement fields; ``None`` means unknown, never zero."""

FLAG_FIELDS: tuple[str, ...] = ("pir_status", "pump_status", "auto_mode")
"""Boolean status flags reported by the device."""


class Reading(BaseModel):
    """A single normalized sensor sample from one ESP32 device.

    Readings are immutable once built. The timestamp is the time the device
    produced the sample, not the time it was received; ordering between
    readings of the same device is decided on it alone.

    Attributes:
        device_id: Opaque device identifier, e.g. ``ESP32-PUMP-01``.
        timestamp: Production time of the sample (timezone-aware UTC).
        voltage: Line voltage in volts, or None when unknown.
        current: Load current in amperes, or None when unknown.
        power: Active power in watts, or None when unknown.
        energy: Accumulated energy, or None when unknown.
        pir_status: True when the PIR sensor detects motion.
        pump_status: True when the pump is running.
        auto_mode: True when the device runs its automatic schedule.
    """

    model_config = ConfigDict(frozen=True)

    device_id: str = Field(min_length=1)
    timestamp: datetime
    voltage: float | None = Field(default=None, ge=0)
    current: float | None = Field(default=None, ge=0)
    power: float | None = Field(default=None, ge=0)
    energy: float | None = Field(default=None, ge=0)
    pir_status: bool = False
    pump_status: bool = False
    auto_mode: bool = False

    @field_validator("timestamp")
    @classmethod
    def timestamp_to_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC; aware ones are converted to UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)


class HealthState(StrEnum):
    """Derived connection/data health of a monitored device."""

    LIVE = "live"
    STALE = "stale"
    OFFLINE = "offline"


class UpsertResult(BaseModel):
    """Outcome of offering a reading to the ReadingStore.

    Attributes:
        accepted: True when the reading superseded the stored one.
        reading: The reading that was offered.
        previous: The latest reading before this call, if any.
        reason: ``accepted``, ``duplicate`` (same timestamp) or
            ``out_of_order`` (older timestamp).
        changes: Field name -> ``(old, new)`` for every field that differs
            from *previous*. Empty when rejected or for the first reading.
    """

    model_config = ConfigDict(frozen=True)

    accepted: bool
    reading: Reading
    previous: Reading | None = None
    reason: str
    changes: dict[str, tuple[Any, Any]] = Field(default_factory=dict)


class StatusSnapshot(BaseModel):
    """Point-in-time view of one monitoring session."""

    device_id: str
    state: HealthState
    connected: bool
    latest: Reading | None = None
    history_length: int = 0
    seconds_since_update: float | None = None


class DataReport(BaseModel):
    """Integrity report over a sequence of readings."""

    total_points: int = 0
    missing_properties: list[str] = Field(default_factory=list)
    unknown_count: int = 0
    unordered_points: int = 0
    anomalies: list[str] = Field(default_factory=list)
