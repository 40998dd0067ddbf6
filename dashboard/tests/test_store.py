"""
Unit tests for the ReadingStore.

Tests verify:
- A later timestamp supersedes; equal or earlier timestamps are discarded.
- Out-of-order delivery never regresses get_latest.
- Upserting an identical timestamp twice does not duplicate history.
- History never exceeds capacity; the oldest reading is evicted.
- get_history returns an immutable snapshot.
- Raw payloads are normalized; missing device_id/timestamp raise and store nothing.
- Accepted readings report per-field changes.
- seed() fills history without stamping an acceptance time.
- clear() drops all state for a device.
- A live reading repeating the seeded latest is accepted in its place.
- Naive timestamps are taken as UTC and compare with aware ones.

CHANGELOG:
- 2026-10-19: Add seed confirmation and naive timestamp tests
- 2026-10-19: Add seed and change-report tests (STORY-010)
- 2026-10-19: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta, timezone
from typing import Any

import pytest

from dashboard.src.errors import InvalidReading
from dashboard.src.models import Reading
from dashboard.src.store import ReadingStore

_T0 = datetime(2026, 10, 19, 10, 0, tzinfo=UTC)


def _reading(seconds: int = 0, device_id: str = "D1", **fields: Any) -> Reading:
    """Build a Reading whose timestamp is _T0 + *seconds*."""
    defaults: dict[str, Any] = {"voltage": 220.0, "current": 2.0, "power": 440.0}
    defaults.update(fields)
    return Reading(device_id=device_id, timestamp=_T0 + timedelta(seconds=seconds), **defaults)


# ---------------------------------------------------------------------------
# Supersede rule
# ---------------------------------------------------------------------------


class TestSupersedeRule:
    """Last writer wins by producer timestamp, not receipt order."""

    def test_first_reading_is_accepted(self) -> None:
        store = ReadingStore()
        result = store.upsert(_reading(0))

        assert result.accepted is True
        assert result.reason == "accepted"
        assert result.previous is None
        assert store.get_latest("D1") == _reading(0)

    def test_later_reading_supersedes(self) -> None:
        store = ReadingStore()
        store.upsert(_reading(0))
        result = store.upsert(_reading(5, voltage=230.0))

        assert result.accepted is True
        assert result.previous == _reading(0)
        assert store.get_latest("D1").voltage == 230.0

    def test_out_of_order_reading_does_not_regress(self) -> None:
        """r2 then r1 (r1 older): latest stays r2."""
        store = ReadingStore()
        r1 = _reading(0, voltage=210.0)
        r2 = _reading(10, voltage=225.0)

        store.upsert(r2)
        result = store.upsert(r1)

        assert result.accepted is False
        assert result.reason == "out_of_order"
        assert store.get_latest("D1") == r2
        assert store.get_history("D1") == (r2,)

    def test_in_order_reading_returns_newest(self) -> None:
        store = ReadingStore()
        r1 = _reading(0)
        r2 = _reading(10)

        store.upsert(r1)
        store.upsert(r2)

        assert store.get_latest("D1") == r2

    def test_equal_timestamp_is_idempotent(self, clock: Callable[[], float]) -> None:
        """Second upsert with the same timestamp is a no-op."""
        store = ReadingStore(clock=clock)
        store.upsert(_reading(0))
        accepted_at = store.last_accepted_at("D1")
        clock.advance(3)  # type: ignore[attr-defined]

        result = store.upsert(_reading(0, voltage=999.0))

        assert result.accepted is False
        assert result.reason == "duplicate"
        assert len(store.get_history("D1")) == 1
        assert store.get_latest("D1").voltage == 220.0
        assert store.last_accepted_at("D1") == accepted_at

    def test_devices_are_independent(self) -> None:
        store = ReadingStore()
        store.upsert(_reading(10, device_id="D1"))
        result = store.upsert(_reading(0, device_id="D2"))

        assert result.accepted is True
        assert set(store.devices()) == {"D1", "D2"}


# ---------------------------------------------------------------------------
# History buffer
# ---------------------------------------------------------------------------


class TestHistoryBuffer:
    """Bounded, insertion-ordered, oldest evicted first."""

    def test_history_never_exceeds_capacity(self) -> None:
        store = ReadingStore(capacity=3)
        for i in range(4):
            store.upsert(_reading(i))

        history = store.get_history("D1")
        assert len(history) == 3
        assert [r.timestamp for r in history] == [_T0 + timedelta(seconds=i) for i in (1, 2, 3)]

    def test_history_is_oldest_first(self) -> None:
        store = ReadingStore()
        store.upsert(_reading(0))
        store.upsert(_reading(1))
        assert [r.timestamp for r in store.get_history("D1")] == [
            _T0,
            _T0 + timedelta(seconds=1),
        ]

    def test_history_snapshot_is_not_affected_by_later_upserts(self) -> None:
        store = ReadingStore()
        store.upsert(_reading(0))
        snapshot = store.get_history("D1")

        store.upsert(_reading(1))

        assert isinstance(snapshot, tuple)
        assert len(snapshot) == 1
        assert len(store.get_history("D1")) == 2

    def test_unknown_device_has_empty_history(self) -> None:
        assert ReadingStore().get_history("nope") == ()

    def test_capacity_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            ReadingStore(capacity=0)


# ---------------------------------------------------------------------------
# Raw payloads and validation
# ---------------------------------------------------------------------------


class TestRawPayloads:
    """Raw mappings are normalized at the store boundary."""

    def test_raw_payload_is_normalized(self, make_payload: Callable[..., dict[str, Any]]) -> None:
        store = ReadingStore()
        result = store.upsert(make_payload(device_id="D1", voltage="oops"))

        assert result.accepted is True
        assert store.get_latest("D1").voltage is None

    def test_missing_device_id_rejected_and_not_stored(
        self, make_payload: Callable[..., dict[str, Any]]
    ) -> None:
        store = ReadingStore()
        payload = make_payload()
        del payload["device_id"]

        with pytest.raises(InvalidReading):
            store.upsert(payload)
        assert store.devices() == ()

    def test_missing_timestamp_rejected_and_not_stored(
        self, make_payload: Callable[..., dict[str, Any]]
    ) -> None:
        store = ReadingStore()
        with pytest.raises(InvalidReading):
            store.upsert(make_payload(device_id="D1", timestamp=None))
        assert store.get_latest("D1") is None


# ---------------------------------------------------------------------------
# Change report
# ---------------------------------------------------------------------------


class TestChangeReport:
    """Accepted readings report which fields changed."""

    def test_first_reading_has_no_changes(self) -> None:
        assert ReadingStore().upsert(_reading(0)).changes == {}

    def test_changed_fields_reported(self) -> None:
        store = ReadingStore()
        store.upsert(_reading(0))
        result = store.upsert(_reading(5, voltage=231.0, pump_status=True))

        assert result.changes == {"voltage": (220.0, 231.0), "pump_status": (False, True)}

    def test_rejected_reading_has_no_changes(self) -> None:
        store = ReadingStore()
        store.upsert(_reading(5))
        assert store.upsert(_reading(0, voltage=100.0)).changes == {}


# ---------------------------------------------------------------------------
# Acceptance bookkeeping, seed and clear
# ---------------------------------------------------------------------------


class TestBookkeeping:
    """Acceptance time, seeding and clearing."""

    def test_acceptance_time_uses_store_clock(self, clock: Callable[[], float]) -> None:
        store = ReadingStore(clock=clock)
        store.upsert(_reading(0))
        assert store.last_accepted_at("D1") == clock()
        assert store.accepted_count("D1") == 1

    def test_seed_fills_history_without_acceptance_time(self) -> None:
        store = ReadingStore(capacity=5)
        stored = store.seed([_reading(0), _reading(1), _reading(1), _reading(2)])

        assert stored == 3
        assert len(store.get_history("D1")) == 3
        assert store.get_latest("D1") == _reading(2)
        assert store.last_accepted_at("D1") is None
        assert store.accepted_count("D1") == 0

    def test_seed_skips_invalid_entries(self, make_payload: Callable[..., dict[str, Any]]) -> None:
        store = ReadingStore()
        stored = store.seed([{"voltage": 220}, make_payload(device_id="D1")])
        assert stored == 1

    def test_upsert_after_seed_must_be_newer(self) -> None:
        store = ReadingStore()
        store.seed([_reading(10)])
        assert store.upsert(_reading(5)).accepted is False
        assert store.upsert(_reading(15)).accepted is True

    def test_clear_removes_device_state(self) -> None:
        store = ReadingStore()
        store.upsert(_reading(0))
        store.clear("D1")

        assert store.get_latest("D1") is None
        assert store.get_history("D1") == ()
        assert store.last_accepted_at("D1") is None
        assert store.devices() == ()

    def test_clear_unknown_device_is_noop(self) -> None:
        ReadingStore().clear("missing")

    def test_live_reading_repeating_seeded_latest_is_accepted(
        self, clock: Callable[[], float]
    ) -> None:
        """A pull returning the newest seeded point marks the device live."""
        store = ReadingStore(clock=clock)
        store.seed([_reading(0), _reading(5)])

        result = store.upsert(_reading(5, pump_status=True))

        assert result.accepted is True
        assert result.changes == {"pump_status": (False, True)}
        assert len(store.get_history("D1")) == 2
        assert store.get_history("D1")[-1].pump_status is True
        assert store.last_accepted_at("D1") == clock()
        assert store.accepted_count("D1") == 1

    def test_repeat_after_seed_confirmation_is_duplicate(self) -> None:
        store = ReadingStore()
        store.seed([_reading(5)])
        store.upsert(_reading(5))

        result = store.upsert(_reading(5))

        assert result.accepted is False
        assert result.reason == "duplicate"
        assert len(store.get_history("D1")) == 1


# ---------------------------------------------------------------------------
# Timestamp handling
# ---------------------------------------------------------------------------


class TestTimestampHandling:
    """Readings built directly always carry aware UTC timestamps."""

    def test_naive_and_aware_readings_compare(self) -> None:
        store = ReadingStore()
        store.upsert(_reading(0))

        result = store.upsert(
            Reading(device_id="D1", timestamp=datetime(2026, 10, 19, 11, 0), voltage=221.0)
        )

        assert result.accepted is True
        assert store.get_latest("D1").timestamp == datetime(2026, 10, 19, 11, 0, tzinfo=UTC)

    def test_offset_timestamp_converted_to_utc(self) -> None:
        wib = timezone(timedelta(hours=7))
        reading = Reading(device_id="D1", timestamp=datetime(2026, 10, 19, 17, 0, tzinfo=wib))

        assert reading.timestamp.utcoffset() == timedelta(0)
        assert reading.timestamp == _T0

    def test_older_naive_reading_is_out_of_order(self) -> None:
        store = ReadingStore()
        store.upsert(_reading(60))

        result = store.upsert(Reading(device_id="D1", timestamp=datetime(2026, 10, 19, 10, 0)))

        assert result.accepted is False
        assert result.reason == "out_of_order"
