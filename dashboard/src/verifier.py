"""
Integrity report over a device's reading history.

Flags gaps and implausible values in the short-term history shown on the
dashboard: measurements the device never reported, points out of timestamp
order, and electrical values outside the range an ESP32 pump node on mains
power can produce.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-013)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Sequence

from dashboard.src.models import MEASUREMENT_FIELDS, DataReport, Reading

VOLTAGE_RANGE_V: tuple[float, float] = (100.0, 300.0)
"""Plausible mains voltage range in volts."""

MAX_CURRENT_A: float = 15.0
"""Current above this is reported as an anomaly."""

MAX_POWER_W: float = 3000.0
"""Power above this is reported as an anomaly."""

MAX_ANOMALIES: int = 5
"""Anomaly messages kept in a report."""


def _anomalies_for(index: int, reading: Reading) -> list[str]:
    found: list[str] = []
    low, high = VOLTAGE_RANGE_V
    if reading.voltage is not None and not (low <= reading.voltage <= high):
        found.append(f"Abnormal voltage at point {index}: {reading.voltage}V")
    if reading.current is not None and reading.current > MAX_CURRENT_A:
        found.append(f"Abnormal current at point {index}: {reading.current}A")
    if reading.power is not None and reading.power > MAX_POWER_W:
        found.append(f"Abnormal power at point {index}: {reading.power}W")
    return found


def verify_history(readings: Sequence[Reading]) -> DataReport:
    """Build a :class:`DataReport` for *readings* (oldest first).

    Args:
        readings: History snapshot, e.g. from ``ReadingStore.get_history``.

    Returns:
        The report; an empty report for an empty sequence.
    """
    if not readings:
        return DataReport()

    first = readings[0]
    missing = [name for name in MEASUREMENT_FIELDS if getattr(first, name) is None]

    unknown_count = sum(
        1 for reading in readings if any(getattr(reading, name) is None for name in MEASUREMENT_FIELDS)
    )
    unordered = sum(
        1 for prev, curr in zip(readings, readings[1:]) if prev.timestamp > curr.timestamp
    )

    anomalies: list[str] = []
    for index, reading in enumerate(readings):
        anomalies.extend(_anomalies_for(index, reading))
        if len(anomalies) >= MAX_ANOMALIES:
            break

    return DataReport(
        total_points=len(readings),
        missing_properties=missing,
        unknown_count=unknown_count,
        unordered_points=unordered,
        anomalies=anomalies[:MAX_ANOMALIES],
    )
