"""
In-memory latest-reading cache with a bounded history per device.

The ReadingStore is the single source of truth for "current value" in a
monitoring session. Readings are ordered by producer timestamp, not receipt
order: a reading only replaces the stored one when its timestamp is strictly
later, so out-of-order push/pull delivery can never regress the value.

Operations:
- upsert(reading): apply the supersede rule, append to history on accept.
- get_latest(device_id): latest accepted reading, or None.
- get_history(device_id): immutable snapshot of the history buffer.
- seed(readings): pre-fill history without marking the device live.
- clear(device_id): drop all state for a device.
- last_accepted_at(device_id): store clock value of the last acceptance.

CHANGELOG:
- 2026-10-19: Accept a live reading that repeats the seeded latest
- 2026-10-19: Report per-field changes on accept (STORY-010)
- 2026-10-19: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from dashboard.src.errors import InvalidReading
from dashboard.src.models import Reading, UpsertResult
from dashboard.src.normalizer import normalize

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_CAPACITY: int = 20
"""Readings kept per device for short-term trend display."""


@dataclass
class _DeviceState:
    """Mutable per-device slot; only touched inside ReadingStore."""

    history: deque[Reading]
    latest: Reading | None = None
    last_accepted_at: float | None = None
    accepted_count: int = field(default=0)
    latest_seeded: bool = False


def _diff(previous: Reading | None, current: Reading) -> dict[str, tuple[Any, Any]]:
    """Return field -> (old, new) for fields that changed since *previous*."""
    if previous is None:
        return {}
    old = previous.model_dump()
    new = current.model_dump()
    return {
        name: (old[name], value)
        for name, value in new.items()
        if name != "timestamp" and old.get(name) != value
    }


class ReadingStore:
    """Latest-reading cache and bounded history, keyed by device_id.

    Args:
        capacity: Maximum number of readings kept in each device's history
            buffer. The oldest reading is evicted first.
        clock: Monotonic clock used to stamp acceptances. Injected so the
            staleness monitor can be tested without sleeping.

    Raises:
        ValueError: If *capacity* is less than 1.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_HISTORY_CAPACITY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("History capacity must be >= 1")
        self._capacity = capacity
        self._clock = clock
        self._devices: dict[str, _DeviceState] = {}

    @property
    def capacity(self) -> int:
        """Maximum history length per device."""
        return self._capacity

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, reading: Reading | Mapping[str, Any]) -> UpsertResult:
        """Offer a reading to the store and apply the supersede rule.

        Raw mappings are normalized first, so malformed measurement fields are
        stored as unknown rather than raising.

        Args:
            reading: A :class:`Reading` or a raw payload mapping.

        Returns:
            An :class:`UpsertResult` describing whether the reading was
            accepted and, if so, which fields changed.

        Raises:
            InvalidReading: If a raw payload has no device_id or timestamp.
                Nothing is stored in that case.
        """
        if not isinstance(reading, Reading):
            reading = normalize(reading)

        state = self._devices.get(reading.device_id)
        if state is None:
            state = _DeviceState(history=deque(maxlen=self._capacity))
            self._devices[reading.device_id] = state

        previous = state.latest
        confirms_seed = (
            state.latest_seeded
            and previous is not None
            and reading.timestamp == previous.timestamp
        )
        if previous is not None and reading.timestamp <= previous.timestamp and not confirms_seed:
            reason = "duplicate" if reading.timestamp == previous.timestamp else "out_of_order"
            logger.debug(
                "Discarded %s reading for device=%s (ts=%s, stored ts=%s)",
                reason,
                reading.device_id,
                reading.timestamp.isoformat(),
                previous.timestamp.isoformat(),
            )
            return UpsertResult(
                accepted=False,
                reading=reading,
                previous=previous,
                reason=reason,
            )

        state.latest = reading
        if confirms_seed:
            # Same sample as the seeded tail; replace it instead of duplicating.
            state.history[-1] = reading
        else:
            state.history.append(reading)
        state.latest_seeded = False
        state.last_accepted_at = self._clock()
        state.accepted_count += 1

        return UpsertResult(
            accepted=True,
            reading=reading,
            previous=previous,
            reason="accepted",
            changes=_diff(previous, reading),
        )

    def seed(self, readings: Iterable[Reading | Mapping[str, Any]]) -> int:
        """Pre-fill history from an external query, oldest first.

        Applies the same supersede rule as :meth:`upsert` but leaves the
        last-accepted time untouched: seeded readings are history, not
        evidence that the device is live. Invalid entries are skipped.
        The first live reading carrying the seeded latest's timestamp is
        accepted in its place, so a pull that returns the newest history
        point marks the device live at once.

        Returns:
            Number of readings that were stored.
        """
        stored = 0
        for item in readings:
            try:
                reading = item if isinstance(item, Reading) else normalize(item)
            except InvalidReading as exc:
                logger.debug("Skipped invalid seed reading: %s", exc)
                continue
            state = self._devices.setdefault(
                reading.device_id, _DeviceState(history=deque(maxlen=self._capacity))
            )
            if state.latest is not None and reading.timestamp <= state.latest.timestamp:
                continue
            state.latest = reading
            state.history.append(reading)
            state.latest_seeded = True
            stored += 1
        return stored

    def clear(self, device_id: str) -> None:
        """Remove all state for *device_id*. Unknown devices are a no-op."""
        if self._devices.pop(device_id, None) is not None:
            logger.info("Cleared stored readings for device=%s", device_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_latest(self, device_id: str) -> Reading | None:
        """Return the latest accepted reading for *device_id*, or None."""
        state = self._devices.get(device_id)
        return state.latest if state is not None else None

    def get_history(self, device_id: str) -> tuple[Reading, ...]:
        """Return the device's history, oldest first, as an immutable snapshot."""
        state = self._devices.get(device_id)
        if state is None:
            return ()
        return tuple(state.history)

    def last_accepted_at(self, device_id: str) -> float | None:
        """Return the store clock value of the last acceptance, or None."""
        state = self._devices.get(device_id)
        return state.last_accepted_at if state is not None else None

    def accepted_count(self, device_id: str) -> int:
        """Return how many readings have been accepted for *device_id*."""
        state = self._devices.get(device_id)
        return state.accepted_count if state is not None else 0

    def devices(self) -> tuple[str, ...]:
        """Return the ids of all devices with stored state."""
        return tuple(self._devices)
